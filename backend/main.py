from fastapi import FastAPI, Depends, HTTPException, Request, status, Header
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload
from typing import List, Optional
import logging
import models
import auth
import order_service
from database import engine, get_db, init_cafe_data, wait_for_db
from roles import OrderStatus, RoleName
from schemas import (
    UserCreate,
    UserUpdate,
    UserResponse,
    UserLogin,
    RoleResponse,
    MenuCreate,
    MenuUpdate,
    MenuResponse,
    OptionResponse,
    StockUpdate,
    OrderCreate,
    OrderCreated,
    OrderItemResponse,
    OrderResponse,
    OrderStatusUpdate,
    OrderSummary,
)
import uvicorn
import os
from redis_client import redis_client

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("cafe_api")

LOGIN_RATE_LIMIT = int(os.getenv("LOGIN_RATE_LIMIT", "10"))
LOGIN_RATE_WINDOW = 60

app = FastAPI(title="COZY Cafe API")


origins = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173",
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in origins if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event():
    if wait_for_db():
        try:
            logger.info("Creating database tables...")
            models.Base.metadata.create_all(bind=engine)
            init_cafe_data()
            logger.info("Database initialised")
        except Exception:
            logger.exception("Failed to create or seed the database")
    else:
        logger.error("Database did not become ready during startup")

    if redis_client.is_available():
        logger.info("Redis available, menu cache enabled")
    else:
        logger.warning("Redis unavailable, menu cache and login rate limiting disabled")


# ========== Authentication and permissions ==========

async def get_current_user(authorization: Optional[str] = Header(None), db: Session = Depends(get_db)):
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")

    token = authorization.replace("Bearer ", "")
    payload = auth.verify_token(token)

    if not payload:
        raise HTTPException(status_code=401, detail="Invalid token")

    username = payload.get("sub")
    if not username:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = db.query(models.User).filter(models.User.username == username).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return user


def require_role(minimum: RoleName):
    """Dependency that admits users whose role ranks at least ``minimum``."""

    async def checker(current_user: models.User = Depends(get_current_user)):
        if not RoleName(current_user.role.name).allows(minimum):
            raise HTTPException(
                status_code=403,
                detail=f"{minimum.value} permission or higher is required",
            )
        return current_user

    return checker


# ========== Response builders ==========

def user_response(user: models.User) -> UserResponse:
    return UserResponse(
        id=user.id,
        username=user.username,
        role=user.role.name,
        role_id=user.role_id,
        created_at=user.created_at,
    )


def menu_response(menu: models.Menu) -> MenuResponse:
    return MenuResponse(
        id=menu.id,
        name=menu.name,
        price=menu.price,
        category=menu.category,
        stock=menu.stock,
        image_url=menu.image_url,
        description=menu.description,
        options=[OptionResponse(id=o.id, name=o.name, price=o.price) for o in menu.options],
    )


def order_response(order: models.Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        totalAmount=order.total_amount,
        status=order.status,
        createdAt=order.created_at,
        items=[
            OrderItemResponse(
                id=item.menu_id,
                name=item.menu.name if item.menu else "Unknown",
                quantity=item.quantity,
                price=item.price,
                selectedOptions=item.selected_options or "",
            )
            for item in order.items
        ],
    )


def get_menu_or_404(db: Session, menu_id: int) -> models.Menu:
    db_menu = db.query(models.Menu).filter(models.Menu.id == menu_id).first()
    if not db_menu:
        raise HTTPException(status_code=404, detail="Menu not found")
    return db_menu


def get_role_or_400(db: Session, role_id: int) -> models.Role:
    role = db.query(models.Role).filter(models.Role.id == role_id).first()
    if not role:
        raise HTTPException(status_code=400, detail=f"Unknown role id {role_id}")
    return role


def count_admins(db: Session) -> int:
    return db.query(models.User).join(models.Role).filter(models.Role.name == RoleName.ADMIN.value).count()


# ========== Service endpoints ==========

@app.get("/")
def read_root():
    return {"message": "COZY Cafe API is working!"}


@app.get("/api/health")
def health_check():
    return {"status": "ok", "message": "Backend server is running with DB integration"}


@app.get("/api/cache/info")
def get_cache_info(current_user: models.User = Depends(require_role(RoleName.ADMIN))):
    return redis_client.get_cache_info()


# ========== Auth ==========

@app.post("/api/auth/login")
def login(user: UserLogin, request: Request, db: Session = Depends(get_db)):
    client_host = request.client.host if request.client else "unknown"
    allowed, _ = redis_client.check_rate_limit(f"rate_limit:login:{client_host}", LOGIN_RATE_LIMIT, LOGIN_RATE_WINDOW)
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many login attempts. Try again in {LOGIN_RATE_WINDOW} seconds."
        )

    db_user = auth.authenticate_user(db, user.username, user.password)
    if not db_user:
        logger.info("Failed login for '%s' from %s", user.username, client_host)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect username or password")

    token = auth.create_user_token(db_user)

    return {
        "token": token,
        "token_type": "bearer",
        "user": {
            "id": db_user.id,
            "username": db_user.username,
            "role": db_user.role.name
        }
    }


@app.get("/api/auth/me", response_model=UserResponse)
def get_current_user_info(current_user: models.User = Depends(get_current_user)):
    return user_response(current_user)


# ========== Menu ==========

@app.get("/api/menu", response_model=List[MenuResponse])
def get_menus(db: Session = Depends(get_db)):
    # Read the version before the database so a concurrent write retires this entry
    cache_version = redis_client.menu_cache_version()
    cached_menus = redis_client.get_cached_menus(cache_version)
    if cached_menus is not None:
        return [MenuResponse(**menu) for menu in cached_menus]

    menus = db.query(models.Menu).options(selectinload(models.Menu.options)).order_by(models.Menu.id).all()
    result = [menu_response(menu) for menu in menus]

    redis_client.cache_menus([menu.dict() for menu in result], cache_version)

    return result


@app.post("/api/admin/menu", response_model=MenuResponse, status_code=201)
def create_menu(menu: MenuCreate, db: Session = Depends(get_db),
                current_user: models.User = Depends(require_role(RoleName.MANAGER))):
    try:
        db_menu = models.Menu(
            name=menu.name,
            price=menu.price,
            category=menu.category,
            stock=menu.stock,
            image_url=menu.image_url,
            description=menu.description,
        )
        db_menu.options = [models.Option(name=o.name, price=o.price) for o in menu.options]
        db.add(db_menu)
        db.commit()
        db.refresh(db_menu)
    except Exception:
        db.rollback()
        logger.exception("Error creating menu '%s'", menu.name)
        raise HTTPException(status_code=500, detail="Error creating menu")

    redis_client.invalidate_menus_cache()
    logger.info("Menu #%d '%s' created by %s", db_menu.id, db_menu.name, current_user.username)
    return menu_response(db_menu)


@app.patch("/api/admin/menu/{menu_id}", response_model=MenuResponse)
def update_menu(menu_id: int, menu: MenuUpdate, db: Session = Depends(get_db),
                current_user: models.User = Depends(require_role(RoleName.MANAGER))):
    db_menu = get_menu_or_404(db, menu_id)

    try:
        changes = menu.dict(exclude_unset=True)
        options = changes.pop("options", None)
        for key, value in changes.items():
            if value is not None:
                setattr(db_menu, key, value)

        if options is not None:
            db_menu.options = [models.Option(name=o["name"], price=o["price"]) for o in options]

        db.commit()
        db.refresh(db_menu)
    except Exception:
        db.rollback()
        logger.exception("Error updating menu %d", menu_id)
        raise HTTPException(status_code=500, detail="Error updating menu")

    redis_client.invalidate_menus_cache()
    return menu_response(db_menu)


@app.patch("/api/admin/menu/{menu_id}/stock", response_model=MenuResponse)
def update_stock(menu_id: int, payload: StockUpdate, db: Session = Depends(get_db),
                 current_user: models.User = Depends(require_role(RoleName.MANAGER))):
    db_menu = get_menu_or_404(db, menu_id)

    try:
        db_menu.stock = payload.stock
        db.commit()
        db.refresh(db_menu)
    except Exception:
        db.rollback()
        logger.exception("Error updating stock for menu %d", menu_id)
        raise HTTPException(status_code=500, detail="Error updating stock")

    redis_client.invalidate_menus_cache()
    logger.info("Stock of menu #%d set to %d by %s", menu_id, payload.stock, current_user.username)
    return menu_response(db_menu)


@app.delete("/api/admin/menu/{menu_id}")
def delete_menu(menu_id: int, db: Session = Depends(get_db),
                current_user: models.User = Depends(require_role(RoleName.MANAGER))):
    db_menu = get_menu_or_404(db, menu_id)

    ordered = db.query(models.OrderItem).filter(models.OrderItem.menu_id == menu_id).count()
    if ordered:
        raise HTTPException(
            status_code=409,
            detail=f"Menu '{db_menu.name}' appears in {ordered} order item(s) and cannot be deleted"
        )

    try:
        db.delete(db_menu)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Error deleting menu %d", menu_id)
        raise HTTPException(status_code=500, detail="Error deleting menu")

    redis_client.invalidate_menus_cache()
    return {"message": "Menu deleted"}


# ========== Orders ==========

@app.post("/api/orders", response_model=OrderCreated, status_code=201)
def create_order(order: OrderCreate, db: Session = Depends(get_db)):
    if not order.items:
        raise HTTPException(status_code=400, detail="Order has no items")

    try:
        order_id = order_service.place_order(db, order.items, order.totalAmount)
    except order_service.MenuNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except order_service.InsufficientStockError as e:
        logger.info("Order rejected: %s", e)
        raise HTTPException(status_code=409, detail=str(e))
    except Exception:
        logger.exception("Error placing order")
        raise HTTPException(status_code=500, detail="Error placing order")

    redis_client.invalidate_menus_cache()
    return OrderCreated(id=order_id, message="Order placed successfully")


@app.get("/api/admin/orders", response_model=List[OrderResponse])
def get_orders(db: Session = Depends(get_db),
               current_user: models.User = Depends(require_role(RoleName.STAFF))):
    orders = (
        db.query(models.Order)
        .options(selectinload(models.Order.items).selectinload(models.OrderItem.menu))
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
        .all()
    )
    return [order_response(order) for order in orders]


@app.get("/api/admin/orders/summary", response_model=OrderSummary)
def get_orders_summary(db: Session = Depends(get_db),
                       current_user: models.User = Depends(require_role(RoleName.STAFF))):
    counts = dict(
        db.query(models.Order.status, func.count(models.Order.id)).group_by(models.Order.status).all()
    )
    return OrderSummary(
        total=sum(counts.values()),
        received=counts.get(OrderStatus.RECEIVED.value, 0),
        preparing=counts.get(OrderStatus.PREPARING.value, 0),
        completed=counts.get(OrderStatus.COMPLETED.value, 0),
        cancelled=counts.get(OrderStatus.CANCELLED.value, 0),
    )


@app.patch("/api/admin/orders/{order_id}", response_model=OrderResponse)
def update_order_status(order_id: int, payload: OrderStatusUpdate, db: Session = Depends(get_db),
                        current_user: models.User = Depends(require_role(RoleName.STAFF))):
    try:
        db_order = order_service.change_order_status(db, order_id, payload.status)
    except order_service.OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except order_service.InvalidStatusTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception:
        logger.exception("Error updating status of order %d", order_id)
        raise HTTPException(status_code=500, detail="Error updating order status or restoring stock")

    if payload.status is OrderStatus.CANCELLED:
        redis_client.invalidate_menus_cache()
    return order_response(db_order)


# ========== Users and roles ==========

@app.get("/api/admin/roles", response_model=List[RoleResponse])
def get_roles(db: Session = Depends(get_db),
              current_user: models.User = Depends(require_role(RoleName.ADMIN))):
    return [RoleResponse(id=r.id, name=r.name) for r in db.query(models.Role).order_by(models.Role.id).all()]


@app.get("/api/admin/users", response_model=List[UserResponse])
def get_users(db: Session = Depends(get_db),
              current_user: models.User = Depends(require_role(RoleName.ADMIN))):
    users = db.query(models.User).options(selectinload(models.User.role)).order_by(models.User.id).all()
    return [user_response(u) for u in users]


@app.post("/api/admin/users", response_model=UserResponse, status_code=201)
def create_user(user: UserCreate, db: Session = Depends(get_db),
                current_user: models.User = Depends(require_role(RoleName.ADMIN))):
    db_user = db.query(models.User).filter(models.User.username == user.username).first()
    if db_user:
        raise HTTPException(status_code=400, detail="Username already registered")
    get_role_or_400(db, user.role_id)

    try:
        db_user = models.User(
            username=user.username,
            password=auth.get_password_hash(user.password),
            role_id=user.role_id,
        )
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
    except Exception:
        db.rollback()
        logger.exception("Error creating user '%s'", user.username)
        raise HTTPException(status_code=500, detail="Error creating user")

    logger.info("User '%s' created by %s", db_user.username, current_user.username)
    return user_response(db_user)


@app.patch("/api/admin/users/{user_id}", response_model=UserResponse)
def update_user(user_id: int, user_update: UserUpdate, db: Session = Depends(get_db),
                current_user: models.User = Depends(require_role(RoleName.ADMIN))):
    db_user = db.query(models.User).filter(models.User.id == user_id).first()
    if not db_user:
        raise HTTPException(status_code=404, detail="User not found")

    if user_update.role_id is not None and user_update.role_id != db_user.role_id:
        new_role = get_role_or_400(db, user_update.role_id)
        if db_user.role.name == RoleName.ADMIN.value and new_role.name != RoleName.ADMIN.value \
                and count_admins(db) <= 1:
            raise HTTPException(status_code=400, detail="Cannot demote the last administrator account")
        db_user.role_id = new_role.id

    if user_update.password:
        db_user.password = auth.get_password_hash(user_update.password)

    try:
        db.commit()
        db.refresh(db_user)
    except Exception:
        db.rollback()
        logger.exception("Error updating user %d", user_id)
        raise HTTPException(status_code=500, detail="Error updating user")

    return user_response(db_user)


@app.delete("/api/admin/users/{user_id}")
def delete_user(user_id: int, db: Session = Depends(get_db),
                current_user: models.User = Depends(require_role(RoleName.ADMIN))):
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")

    user_to_delete = db.query(models.User).filter(models.User.id == user_id).first()
    if not user_to_delete:
        raise HTTPException(status_code=404, detail="User not found")

    # The caller is an Admin other than the target, so an Admin always remains.
    username = user_to_delete.username
    try:
        db.delete(user_to_delete)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Error deleting user %d", user_id)
        raise HTTPException(status_code=500, detail="Error deleting user")

    return {"message": f"User {username} deleted successfully."}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "3001")))
