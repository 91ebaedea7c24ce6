"""
Marketplace — Account and character lookups against the game tables
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import Forbidden, Unauthenticated
from marketplace.models import Account, Player


async def get_account(session: AsyncSession, account_id: int, for_update: bool = False) -> Account:
    account = await session.get(Account, account_id, with_for_update=for_update)
    if account is None:
        raise Unauthenticated("Account not found")
    return account


async def owned_character(session: AsyncSession, account_id: int, player_id: int) -> Player:
    """The character, if it exists, is not deleted and belongs to the account."""
    player = await session.get(Player, player_id)
    if player is None or player.deleted or player.account_id != account_id:
        raise Forbidden("Character does not belong to your account", player_id=player_id)
    return player


async def list_characters(session: AsyncSession, account_id: int) -> list[Player]:
    result = await session.execute(
        select(Player)
        .where(Player.account_id == account_id, Player.deleted.is_(False))
        .order_by(Player.name)
    )
    return list(result.scalars().all())
