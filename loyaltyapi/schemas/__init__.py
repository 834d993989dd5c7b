from .points import PointsLedgerEntry, PointsTransactionResult
from .vouchers import VoucherResponse
from .reports import MissingPointsReportResponse
