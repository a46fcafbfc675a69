from pydantic import BaseModel, Field, model_validator


class SchedulerModel(BaseModel):
    claim_ttl_sec: float = Field(default=300, gt=0)
    """Lease on a reminder occurrence while it is delivered, then another worker may retry it."""
    enabled: bool = True
    """Run the periodic scan alongside the API."""
    interval_sec: float = Field(default=60, gt=0)
    send_timeout_sec: float = Field(default=10, gt=0)
    """Maximum time given to one channel to deliver a notification."""

    @model_validator(mode="after")
    def _validate_claim_ttl(self) -> "SchedulerModel":
        # Channels are sent concurrently, a delivery lasts about one send timeout
        if self.claim_ttl_sec <= self.send_timeout_sec:
            raise ValueError("Claim TTL must be longer than the send timeout")
        return self
