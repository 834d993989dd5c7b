# Repository layer - Data access with Pydantic responses

from .base import BaseRepository
from .points_repository import PointsRepository
from .balance_repository import UserBalanceRepository
from .voucher_repository import VoucherRepository
from .report_repository import ReportRepository
