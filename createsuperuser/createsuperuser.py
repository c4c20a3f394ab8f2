from getpass import getpass

from pydantic import ValidationError

from storefront.database import SessionLocal, init_db
from storefront.models import RoleEnum, User
from storefront.schemas import AdminCreate
from storefront.security import hash_password


def build_admin(data: AdminCreate) -> User:
    return User(
        email=data.email,
        full_name=data.full_name,
        phone=data.phone,
        hashed_password=hash_password(data.password),
        role=RoleEnum.ADMIN,
        # admins don't receive shipments
        house_number="-",
        street="-",
        area="-",
        city="-",
        state="-",
        pin_code="-",
    )


def create_superuser():
    try:
        data = AdminCreate(
            email=input("Email: "),
            full_name=input("Full name: "),
            phone=input("Phone: "),
            password=getpass("Password: "),
        )
    except ValidationError as exc:
        for error in exc.errors():
            print(f"{'.'.join(str(p) for p in error['loc'])}: {error['msg']}")
        return

    init_db()
    db = SessionLocal()

    if db.query(User).filter(User.email == data.email).first():
        print("A user with this email already exists")
        db.close()
        return

    user = build_admin(data)
    db.add(user)
    db.commit()
    db.refresh(user)
    db.close()

    print("Superuser created successfully")


if __name__ == "__main__":
    create_superuser()
