from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.deps import get_store
from backend.security import require_roles
from backend.services.lifecycle import STAFF_ROLES
from database.db import GatepassStore

router = APIRouter(dependencies=[Depends(require_roles("ADMIN"))])


class StaffCreate(BaseModel):
    email: str
    password: str
    full_name: str
    role: str
    hostel: str | None = None


@router.post("/admin/staff", status_code=201)
def create_staff(payload: StaffCreate, store: GatepassStore = Depends(get_store)):
    role = payload.role.strip().upper()
    if role not in STAFF_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role for staff creation.")

    # Only attendants are tied to a hostel
    hostel = (payload.hostel or "").strip() or None
    user = store.create_user(
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        role=role,
        hostel=hostel if role == "HOSTEL_ATTENDANT" else None,
    )
    return {"message": "Staff created successfully", "user": user}


@router.get("/admin/staff")
def list_staff(store: GatepassStore = Depends(get_store)):
    return store.list_users(STAFF_ROLES)
