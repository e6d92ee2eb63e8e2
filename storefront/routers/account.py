import logging
from typing import List

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import (
    ConflictException, NotFoundException, SuccessResponse, ValidationException,
    get_password_hash, serialize_doc, str_to_oid, verify_password
)
from storefront.catalog import fetch_product, fetch_products, product_response
from storefront.dependencies import get_current_user, get_db
from storefront.models import AddressDB, to_document
from storefront.schemas import (
    AddressCreate, AddressResponse, PasswordChange, ProductResponse, ProfileUpdate,
    UserResponse, WishlistAdd
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/account", tags=["account"])


async def _load_user(db: AsyncIOMotorDatabase, user_id: str) -> dict:
    user = await db.users.find_one({"_id": str_to_oid(user_id, "User not found")})
    if not user:
        raise NotFoundException("User not found")
    return user


async def _save_addresses(db: AsyncIOMotorDatabase, user: dict, addresses: List[dict]) -> List[AddressResponse]:
    # Exactly one default while any address exists
    if addresses and not any(a.get("is_default") for a in addresses):
        addresses[0]["is_default"] = True
    await db.users.update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses}})
    return [AddressResponse(**a) for a in addresses]


# Profile
@router.put("/profile", response_model=SuccessResponse[UserResponse])
async def update_profile(profile: ProfileUpdate, user: dict = Depends(get_current_user),
                         db: AsyncIOMotorDatabase = Depends(get_db)):
    doc = await _load_user(db, user["sub"])
    update_data = {k: v for k, v in profile.dict().items() if v is not None}
    if "email" in update_data and update_data["email"] != doc["email"]:
        if await db.users.find_one({"email": update_data["email"]}):
            raise ConflictException("Email already registered")

    if update_data:
        await db.users.update_one({"_id": doc["_id"]}, {"$set": update_data})
    updated = await _load_user(db, user["sub"])
    return SuccessResponse(data=UserResponse(**serialize_doc(updated)), message="Profile updated")


@router.put("/password", response_model=SuccessResponse[dict])
async def change_password(body: PasswordChange, user: dict = Depends(get_current_user),
                          db: AsyncIOMotorDatabase = Depends(get_db)):
    doc = await _load_user(db, user["sub"])
    if not verify_password(body.current_password, doc["password_hash"]):
        raise ValidationException("Current password is incorrect")
    await db.users.update_one({"_id": doc["_id"]}, {"$set": {"password_hash": get_password_hash(body.new_password)}})
    logger.info("Password changed", extra={"user_id": user["sub"]})
    return SuccessResponse(message="Password updated")


# Addresses
@router.get("/addresses", response_model=SuccessResponse[List[AddressResponse]])
async def list_addresses(user: dict = Depends(get_current_user), db: AsyncIOMotorDatabase = Depends(get_db)):
    doc = await _load_user(db, user["sub"])
    return SuccessResponse(data=[AddressResponse(**a) for a in doc.get("addresses", [])])


@router.post("/addresses", response_model=SuccessResponse[List[AddressResponse]])
async def add_address(address: AddressCreate, user: dict = Depends(get_current_user),
                      db: AsyncIOMotorDatabase = Depends(get_db)):
    doc = await _load_user(db, user["sub"])
    addresses = doc.get("addresses", [])
    new_address = to_document(AddressDB(**address.dict()))
    if new_address["is_default"]:
        for a in addresses:
            a["is_default"] = False
    addresses.append(new_address)
    return SuccessResponse(data=await _save_addresses(db, doc, addresses), message="Address added")


@router.put("/addresses/{address_id}", response_model=SuccessResponse[List[AddressResponse]])
async def update_address(address_id: str, address: AddressCreate, user: dict = Depends(get_current_user),
                         db: AsyncIOMotorDatabase = Depends(get_db)):
    doc = await _load_user(db, user["sub"])
    addresses = doc.get("addresses", [])
    for i, a in enumerate(addresses):
        if a["address_id"] == address_id:
            break
    else:
        raise NotFoundException("Address not found")

    if address.is_default:
        for a in addresses:
            a["is_default"] = False
    addresses[i] = to_document(AddressDB(address_id=address_id, **address.dict()))
    return SuccessResponse(data=await _save_addresses(db, doc, addresses), message="Address updated")


@router.put("/addresses/{address_id}/default",response_model=SuccessResponse[List[AddressResponse]])
async def set_default_address(address_id: str, user: dict = Depends(get_current_user),
                              db: AsyncIOMotorDatabase = Depends(get_db)):
    doc = await _load_user(db, user["sub"])
    addresses = doc.get("addresses", [])
    if not any(a["address_id"] == address_id for a in addresses):
        raise NotFoundException("Address not found")
    for a in addresses:
        a["is_default"] = a["address_id"] == address_id
    return SuccessResponse(data=await _save_addresses(db, doc, addresses))


@router.delete("/addresses/{address_id}", response_model=SuccessResponse[List[AddressResponse]])
async def delete_address(address_id: str, user: dict = Depends(get_current_user),
                         db: AsyncIOMotorDatabase = Depends(get_db)):
    doc = await _load_user(db, user["sub"])
    addresses = doc.get("addresses", [])
    remaining = [a for a in addresses if a["address_id"] != address_id]
    if len(remaining) == len(addresses):
        raise NotFoundException("Address not found")
    return SuccessResponse(data=await _save_addresses(db, doc, remaining), message="Address removed")


# Wishlist
@router.get("/wishlist", response_model=SuccessResponse[List[ProductResponse]])
async def get_wishlist(user: dict = Depends(get_current_user), db: AsyncIOMotorDatabase = Depends(get_db)):
    doc = await _load_user(db, user["sub"])
    wishlist = doc.get("wishlist", [])
    products = await fetch_products(db, wishlist)
    return SuccessResponse(data=[product_response(products[pid]) for pid in wishlist if pid in products])


@router.post("/wishlist", response_model=SuccessResponse[List[str]])
async def add_to_wishlist(item: WishlistAdd, user: dict = Depends(get_current_user),
                          db: AsyncIOMotorDatabase = Depends(get_db)):
    product = await fetch_product(db, item.product_id)
    oid = str_to_oid(user["sub"], "User not found")
    await db.users.update_one({"_id": oid}, {"$addToSet": {"wishlist": str(product["_id"])}})
    doc = await _load_user(db, user["sub"])
    return SuccessResponse(data=doc.get("wishlist", []), message="Added to wishlist")


@router.delete("/wishlist/{product_id}", response_model=SuccessResponse[List[str]])
async def remove_from_wishlist(product_id: str, user: dict = Depends(get_current_user),
                               db: AsyncIOMotorDatabase = Depends(get_db)):
    oid = str_to_oid(user["sub"], "User not found")
    await db.users.update_one({"_id": oid}, {"$pull": {"wishlist": product_id}})
    doc = await _load_user(db, user["sub"])
    return SuccessResponse(data=doc.get("wishlist", []), message="Removed from wishlist")
