"""
Marketplace — Game server tables

[GAME DATA] — owned by the game server. This service reads accounts and
players, debits accounts.boss_points, and appends rows to player_depotitems.
Columns are limited to what the marketplace touches.
"""
from sqlalchemy import String, Integer, Boolean, ForeignKey, LargeBinary, SmallInteger
from sqlalchemy.orm import Mapped, mapped_column
from marketplace.db.database import Base


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    group_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    boss_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Account id={self.id} name={self.name}>"


class Player(Base):
    __tablename__ = "players"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), index=True, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    vocation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PlayerDepotItem(Base):
    """
    One item row in a character's depot. sid is unique per character;
    pid points at the containing item's sid (0 = depot root).
    """
    __tablename__ = "player_depotitems"

    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), primary_key=True)
    sid: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    pid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    itemtype: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    count: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    attributes: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, default=b"")
