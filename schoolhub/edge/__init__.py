from sqlalchemy.orm import Session

from .attendance_routes import router as attendance_router
from .database import Base, engine
from .routes import router
from .services import seed_global_admin


def init_edge_module() -> None:
    Base.metadata.create_all(bind=engine)
    db = Session(bind=engine)
    try:
        seed_global_admin(db)
    finally:
        db.close()


__all__ = ["router", "attendance_router", "init_edge_module"]
