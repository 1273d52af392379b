from __future__ import annotations

from mediajobs.errors import ApiError


class CreditGate:
    """Decides whether a user may start a paid job on a lane."""

    def has_credits(self, *, user_id: str | None, lane: str) -> bool:
        raise NotImplementedError

    def ensure(self, *, user_id: str | None, lane: str) -> None:
        if not self.has_credits(user_id=user_id, lane=lane):
            raise ApiError(
                code="CREDITS_INSUFFICIENT",
                message=f"insufficient credits for {lane} job",
                error_class="business_rule",
                retryable=False,
                http_status=402,
            )


class AllowAllCreditGate(CreditGate):
    def has_credits(self, *, user_id: str | None, lane: str) -> bool:
        return True
