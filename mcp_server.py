import sys
from contextlib import contextmanager

from mcp.server.fastmcp import FastMCP

from rewards_ledger.core.database import SessionLocal
from rewards_ledger.models.points_transaction import PointsTransaction
from rewards_ledger.models.user import UserAccount
from rewards_ledger.services.redemption import RedemptionLifecycle, expire_if_due

# Read-only ledger tools over stdio
mcp = FastMCP("Rewards-Ledger-Server")


@contextmanager
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@mcp.tool()
def get_points_balance(user_id: str) -> dict:
    """Current spendable points and lifetime points for a user."""
    with get_db() as db:
        user = db.get(UserAccount, user_id)
        if not user:
            return {"error": "User not found"}
        return {
            "user_id": user.user_id,
            "name": user.name,
            "points": user.points,
            "lifetime_points": user.lifetime_points,
            "is_banned": user.is_banned,
        }


@mcp.tool()
def get_points_history(user_id: str, limit: int = 20) -> list[dict]:
    """Newest-first points ledger entries for a user."""
    with get_db() as db:
        rows = (
            db.query(PointsTransaction)
            .filter(PointsTransaction.user_id == user_id)
            .order_by(PointsTransaction.timestamp.desc())
            .limit(max(1, min(limit, 200)))
            .all()
        )
        return [
            {
                "id": t.id,
                "type": t.effective_type.value,
                "display_name": t.effective_type.display_name,
                "amount": t.amount,
                "description": t.description,
                "metadata": t.meta,
                "date": t.timestamp.isoformat(),
            }
            for t in rows
        ]


@mcp.tool()
def get_active_redemption(user_id: str) -> dict:
    """The user's reserved reward, if any. Never refunds; reports overdue ones as expired."""
    with get_db() as db:
        active = RedemptionLifecycle.active_for(db, user_id)
        if active is None:
            return {"user_id": user_id, "active": False}
        return {
            "user_id": user_id,
            "active": True,
            "reward_id": active.id,
            "reward_title": active.reward_title,
            "redemption_code": active.redemption_code,
            "points_cost": active.points_cost,
            "expires_at": active.expires_at.isoformat(),
            "overdue": expire_if_due(active),
        }


if __name__ == "__main__":
    # Start the standard streaming stdio server
    print("Starting Rewards Ledger MCP Server on stdio...", file=sys.stderr)
    mcp.run()
