from fastapi import APIRouter, Depends

from loyaltyapi.deps import get_reward_service
from loyaltyapi.schemas.rewards import RewardExchangeRequest, RewardExchangeResponse
from loyaltyapi.services.reward_service import RewardService

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.post("/exchange", response_model=RewardExchangeResponse)
def exchange_points_for_voucher(
    request: RewardExchangeRequest,
    reward_service: RewardService = Depends(get_reward_service),
) -> RewardExchangeResponse:
    """
    포인트로 리워드 바우처 교환

    포인트 차감과 바우처 발급이 하나의 트랜잭션으로 처리된다.
    잔액이 부족하면 400 이며 아무것도 기록되지 않는다.
    """
    return reward_service.exchange_points_for_voucher(request.user_id, request)
