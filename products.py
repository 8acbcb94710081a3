from __future__ import annotations
import re
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from database import create_document, get_db, get_documents, to_str_id
from schemas import Category, Product, product_summary

router = APIRouter(tags=["products"])

# Seed data: press-on sets across a few shapes and finishes
SEED_PRODUCTS: list[dict] = [
    {
        "title": "Classic French Almond",
        "description": "Glossy nude base with crisp white tips on a medium almond shape.",
        "price": 40.0,
        "category": "french",
        "colors": ["nude", "white"],
        "images": [{"url": "https://images.unsplash.com/photo-1604654894610-df63bc536371?q=80&w=1200&auto=format&fit=crop", "alt": "French almond set"}],
        "variants": [
            {"size": "S", "design": "classic", "stock": 25},
            {"size": "M", "design": "classic", "stock": 30},
            {"size": "L", "design": "classic", "stock": 15},
        ],
        "featured": True,
        "tags": ["French", "Bridal"],
    },
    {
        "title": "Midnight Chrome Coffin",
        "description": "Mirror chrome finish over deep navy, long coffin shape.",
        "price": 32.5,
        "category": "chrome",
        "colors": ["navy", "silver"],
        "images": [{"url": "https://images.unsplash.com/photo-1610992015732-2449b76344bc?q=80&w=1200&auto=format&fit=crop", "alt": "Chrome coffin set"}],
        "variants": [
            {"size": "XS", "design": "mirror", "stock": 10},
            {"size": "M", "design": "mirror", "stock": 20},
            {"size": "M", "design": "aurora", "stock": 12},
        ],
        "tags": ["chrome", "party"],
    },
    {
        "title": "Stardust Glitter Stiletto",
        "description": "Full-coverage champagne glitter on a sharp stiletto shape.",
        "price": 28.0,
        "category": "glitter",
        "colors": ["gold", "champagne"],
        "images": [{"url": "https://images.unsplash.com/photo-1519014816548-bf5fe059798b?q=80&w=1200&auto=format&fit=crop", "alt": "Glitter stiletto set"}],
        "variants": [
            {"size": "S", "design": "champagne", "stock": 18},
            {"size": "L", "design": "champagne", "stock": 8},
        ],
        "tags": ["glitter", "holiday"],
    },
    {
        "title": "Soft Matte Square",
        "description": "Velvet matte finish in dusty rose, short square shape for every day.",
        "price": 24.0,
        "category": "matte",
        "colors": ["rose"],
        "images": [{"url": "https://images.unsplash.com/photo-1632345031435-8727f6897d53?q=80&w=1200&auto=format&fit=crop", "alt": "Matte square set"}],
        "variants": [
            {"size": "XS", "design": "dusty rose", "stock": 40},
            {"size": "S", "design": "dusty rose", "stock": 40},
            {"size": "M", "design": "dusty rose", "stock": 40},
        ],
        "tags": ["everyday"],
    },
]


class SeedResponse(BaseModel):
    inserted: int


@router.post("/seed", response_model=SeedResponse)
async def seed_products():
    # Insert only if products collection is empty
    db = await get_db()
    count = await db["product"].count_documents({})
    if count == 0:
        for p in SEED_PRODUCTS:
            await create_document("product", Product(**p).model_dump())
        return SeedResponse(inserted=len(SEED_PRODUCTS))
    return SeedResponse(inserted=0)


@router.get("/products")
async def list_products(category: Optional[Category] = None,
                        q: Optional[str] = Query(None),
                        featured: Optional[bool] = None,
                        limit: int = Query(50, ge=1, le=100)):
    filter_dict: dict = {"active": True}
    if category:
        filter_dict["category"] = category
    if featured is not None:
        filter_dict["featured"] = featured
    if q:
        # Simple case-insensitive title search
        filter_dict["title"] = {"$regex": re.escape(q), "$options": "i"}
    docs = await get_documents("product", filter_dict, limit=limit, sort=[("created_at", -1)])
    return [product_summary(d) for d in docs]


@router.get("/products/{slug_or_id}")
async def get_product(slug_or_id: str):
    db = await get_db()
    filt = {"_id": ObjectId(slug_or_id)} if ObjectId.is_valid(slug_or_id) else {"seo.slug": slug_or_id}
    doc = await db["product"].find_one(filt)
    if not doc or not doc.get("active", True):
        raise HTTPException(status_code=404, detail="Product not found")
    return product_summary(to_str_id(doc))
