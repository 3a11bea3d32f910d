import pytest
from httpx import ASGITransport, AsyncClient

from credit_rewards.services.rewards.catalog import ReactionInput


@pytest.mark.asyncio
async def test_list_reward_types(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/rewards/types")

    assert response.status_code == 200
    payload = {item["type"]: item for item in response.json()}
    assert set(payload) == {"userReaction", "reportAccepted", "goodContent", "userReferred"}
    assert payload["goodContent"]["onDemand"] is False
    assert payload["goodContent"]["types"] == ["goodContent", "goodContent:image", "goodContent:article"]
    assert payload["userReaction"]["awardAmount"] == 2


@pytest.mark.asyncio
async def test_user_reward_details_include_todays_progress(app_with_db) -> None:
    app, registry = app_with_db
    registry.runtime.ledger_factory = _NullLedger
    reactions = registry.get("userReaction")
    for index in range(3):
        await reactions.apply(ReactionInput(content_id=f"post-{index}", user_id=1, reaction="like", owner_id=2))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/rewards/users/1")

    assert response.status_code == 200
    body = response.json()
    assert body["userId"] == 1
    rewards = {item["type"]: item for item in body["rewards"]}
    assert rewards["userReaction"]["awarded"] == 6
    assert rewards["userReaction"]["cap"] == 100
    assert rewards["goodContent"]["awarded"] == -1
    assert rewards["goodContent"]["interval"] == "day"


class _NullLedger:
    def __init__(self, session) -> None:
        self.session = session

    async def credit(self, instruction) -> str:
        return "tx"

    async def credit_many(self, instructions) -> list[str]:
        return ["tx" for _ in instructions]

    async def refund(self, transaction_id: str, reason: str) -> str:
        return "refund"
