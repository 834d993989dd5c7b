from loyaltyapi.config import settings


# 엔드포인트별 페이지네이션 제한
class PaginationLimits:
    POINTS_LEDGER = {
        "min": 1,
        "max": settings.LEDGER_PAGE_MAX,
        "default": settings.LEDGER_PAGE_DEFAULT,
    }
    REPORTS = {"min": 1, "max": 100, "default": 50}
