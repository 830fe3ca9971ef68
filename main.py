import logging
import os
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cart import best_price_for_product, build_summary, reconcile, summary_to_wire
from coupons import FirebaseCouponValidator, normalize_code
from errors import ArithmeticInvariantViolation, InvalidPromotionParameters
from firebase_util import get_db_ref, get_session_usage
from models import (
    CartItemAdd, CartItemUpdate, CartLine, CartSummary,
    CouponCreate, CouponValidateRequest, CouponValidation, DiscountResult,
    MessageResponse, OrderCreate, OrderResponse, Promotion,
    PromotionCreate, PromotionPriceRequest, SummaryRequest,
)
from promotions import active_promotions, load_promotions, parse_promotion

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI()

# 🔐 Allow frontend CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "http://127.0.0.1:5500").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ADMIN_KEY = os.getenv("ADMIN_API_KEY")


# 🔐 Admin API key check
def check_admin(api_key: str = Header(..., alias="x-api-key")):
    if not ADMIN_KEY or api_key != ADMIN_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_now() -> datetime:
    return datetime.now(timezone.utc)


@app.exception_handler(InvalidPromotionParameters)
def invalid_promotion_handler(request: Request, exc: InvalidPromotionParameters):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ArithmeticInvariantViolation)
def invariant_handler(request: Request, exc: ArithmeticInvariantViolation):
    logger.error(f"Pricing invariant violated on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Pricing error, order not accepted"})


def _load_stored_promotions(ref):
    stored = ref.child("promotions").get() or {}
    return load_promotions([{**raw, "_id": key} for key, raw in stored.items()])


def _load_cart(ref, session_id) -> List[CartLine]:
    items = ref.child("carts").child(session_id).child("items").get() or {}
    return [CartLine.model_validate({**item, "lineId": line_id}) for line_id, item in items.items()]


def _validate_coupon(ref, code, session_id, now) -> Optional[CouponValidation]:
    if not normalize_code(code):
        return None
    return FirebaseCouponValidator(ref).validate(code, session_id, now=now)


@app.get("/api/health")
def health():
    return {"status": "ok"}


# 🎯 1. CREATE PROMOTION
@app.post("/api/promotions", response_model=Promotion, dependencies=[Depends(check_admin)])
def create_promotion(body: PromotionCreate, ref=Depends(get_db_ref)):
    promo_id = uuid.uuid4().hex
    raw = body.model_dump(exclude_none=True)
    # raises InvalidPromotionParameters -> 400 before anything is stored
    promotion = parse_promotion({**raw, "_id": promo_id})
    ref.child("promotions").child(promo_id).set(raw)
    logger.info(f"Promotion {promo_id} ({promotion.kind}) created")
    return promotion


# 🎯 2. ACTIVE PROMOTIONS
@app.get("/api/promotions/active", response_model=List[Promotion])
def list_active_promotions(ref=Depends(get_db_ref), now: datetime = Depends(get_now)):
    return active_promotions(_load_stored_promotions(ref), now)


# 🎯 3. QUICK-ADD PRICE FOR A PRODUCT CARD
@app.post("/api/promotions/price", response_model=Optional[DiscountResult])
def promotion_price(body: PromotionPriceRequest, ref=Depends(get_db_ref), now: datetime = Depends(get_now)):
    return best_price_for_product(_load_stored_promotions(ref), body.productId, body.basePrice, now)


# 🎯 4. CREATE COUPON
@app.post("/api/coupons", response_model=MessageResponse, dependencies=[Depends(check_admin)])
def create_coupon(coupon: CouponCreate, ref=Depends(get_db_ref)):
    code = normalize_code(coupon.code)
    if not code:
        raise HTTPException(status_code=400, detail="Coupon code is required")

    coupon_ref = ref.child("coupons").child(code)
    if coupon_ref.get():
        raise HTTPException(status_code=409, detail="Coupon code already exists")

    data = {
        "discountPercentage": coupon.discountPercentage,
        "usesLeft": coupon.uses if coupon.uses is not None else -1,
        "isActive": coupon.isActive,
    }
    if coupon.expiresAt:
        data["expiresAt"] = coupon.expiresAt

    coupon_ref.set(data)
    logger.info(f"Coupon {code} created")
    return {"message": f"Coupon {code} created successfully"}


# 🎯 5. VALIDATE COUPON
@app.post("/api/coupons/validate", response_model=CouponValidation)
def validate_coupon(body: CouponValidateRequest, ref=Depends(get_db_ref), now: datetime = Depends(get_now)):
    return FirebaseCouponValidator(ref).validate(body.code, body.sessionId or body.userId, now=now)


def _redeem(ref, code, session_id):
    coupon_ref = ref.child("coupons").child(code)
    data = coupon_ref.get()
    if not data:
        raise HTTPException(status_code=404, detail="Coupon not found")

    if data.get("usesLeft", -1) != -1:
        coupon_ref.child("usesLeft").set(max(0, data["usesLeft"] - 1))

    ref.child("couponUsage").child(session_id).set({
        "coupon": code,
        "usedAt": datetime.now(timezone.utc).isoformat(),
    })
    logger.info(f"Coupon {code} redeemed by session {session_id}")


# 🎯 6. REDEEM COUPON
@app.post("/api/coupons/{code}/redeem")
def redeem_coupon(code: str, sessionId: str, ref=Depends(get_db_ref)):
    code = normalize_code(code)

    used = get_session_usage(ref, sessionId)
    if used and used.get("coupon") == code:
        return {"success": False, "message": "Already redeemed"}

    _redeem(ref, code, sessionId)
    return {"success": True, "message": f"Coupon {code} redeemed"}


# 🛒 CART
@app.get("/api/cart/{session_id}", response_model=List[CartLine])
def get_cart(session_id: str, ref=Depends(get_db_ref)):
    return _load_cart(ref, session_id)


@app.post("/api/cart/{session_id}/items", response_model=CartLine)
def add_cart_item(session_id: str, body: CartItemAdd, ref=Depends(get_db_ref)):
    product = ref.child("products").child(body.productId).get()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    items_ref = ref.child("carts").child(session_id).child("items")
    for line in _load_cart(ref, session_id):
        if (line.product_id, line.size, line.color) == (body.productId, body.size, body.color):
            # same variant: only the quantity grows, the price snapshot stays
            updated = line.with_quantity(line.quantity + body.quantity)
            items_ref.child(line.line_id).child("quantity").set(updated.quantity)
            return updated

    line = CartLine(
        line_id=uuid.uuid4().hex,
        product_id=body.productId,
        product_name=product.get("name", ""),
        quantity=body.quantity,
        unit_price=product.get("price", 0),
        size=body.size,
        color=body.color,
    )
    items_ref.child(line.line_id).set(line.model_dump(mode="json", by_alias=True, exclude={"line_id"}))
    return line


@app.patch("/api/cart/{session_id}/items/{line_id}", response_model=CartLine)
def update_cart_item(session_id: str, line_id: str, body: CartItemUpdate, ref=Depends(get_db_ref)):
    line = next((l for l in _load_cart(ref, session_id) if l.line_id == line_id), None)
    if line is None:
        raise HTTPException(status_code=404, detail="Cart item not found")

    updated = line.with_quantity(body.quantity)
    ref.child("carts").child(session_id).child("items").child(line_id).child("quantity").set(updated.quantity)
    return updated


@app.delete("/api/cart/{session_id}/items/{line_id}", response_model=MessageResponse)
def delete_cart_item(session_id: str, line_id: str, ref=Depends(get_db_ref)):
    item_ref = ref.child("carts").child(session_id).child("items").child(line_id)
    if not item_ref.get():
        raise HTTPException(status_code=404, detail="Cart item not found")
    item_ref.delete()
    return {"message": "Item removed"}


@app.post("/api/cart/{session_id}/summary", response_model=CartSummary)
def cart_summary(session_id: str, body: SummaryRequest, ref=Depends(get_db_ref), now: datetime = Depends(get_now)):
    lines = _load_cart(ref, session_id)
    coupon = _validate_coupon(ref, body.couponCode, session_id, now)
    return build_summary(lines, _load_stored_promotions(ref), coupon, body.shippingCost, now)


# 📦 ORDERS: the authoritative recomputation
@app.post("/api/orders", response_model=OrderResponse)
def create_order(body: OrderCreate, ref=Depends(get_db_ref), now: datetime = Depends(get_now)):
    lines = _load_cart(ref, body.sessionId)
    if not lines:
        raise HTTPException(status_code=400, detail="Cart is empty")

    coupon = _validate_coupon(ref, body.couponCode, body.sessionId, now)
    summary = build_summary(lines, _load_stored_promotions(ref), coupon, body.shippingCost, now)
    check = reconcile(body.clientTotal, summary)
    if not check.matches:
        logger.warning(
            f"Session {body.sessionId}: client showed {body.clientTotal}, charging {summary.final_total}"
        )

    if coupon is not None and coupon.valid:
        _redeem(ref, coupon.code, body.sessionId)

    order_ref = ref.child("orders").push({
        "sessionId": body.sessionId,
        "items": [line.model_dump(mode="json", by_alias=True) for line in lines],
        "summary": summary_to_wire(summary),
        "couponCode": summary.coupon_code,
        "shippingMethod": body.shippingMethod,
        "shippingAddressId": body.shippingAddressId,
        "paymentMethod": body.paymentMethod,
        "status": "pending",
        "createdAt": now.isoformat(),
    })
    ref.child("carts").child(body.sessionId).delete()
    logger.info(f"Order {order_ref.key} created for session {body.sessionId}: total {summary.final_total}")

    return {
        "orderId": order_ref.key,
        "status": "pending",
        "summary": summary,
        "priceChanged": not check.matches,
        "clientTotal": body.clientTotal,
    }
