from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockroom.api.deps import get_current_user
from stockroom.db.database import get_db
from stockroom.models.user import User
from stockroom.schemas.dashboard import DashboardMetricsOut, DashboardStatisticsOut
from stockroom.services.dashboard import dashboard_metrics, dashboard_statistics

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("", response_model=DashboardMetricsOut)
def get_dashboard_metrics(_: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return dashboard_metrics(db)


@router.get("/statistics", response_model=DashboardStatisticsOut)
def get_dashboard_statistics(_: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return dashboard_statistics(db)
