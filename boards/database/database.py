from typing import Optional, Any, Dict
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import select

from boards.config import Config
from boards.database.models import Base, Chapter, Map, User, Changelog, CoopBundled
from boards.utils.logger import setup_logger

# Columns a score update may touch; identity and coop linkage stay fixed
UPDATABLE_CHANGELOG_FIELDS = frozenset({
    'timestamp', 'score', 'demo_id', 'banned', 'youtube_id', 'previous_id',
    'post_rank', 'pre_rank', 'submission', 'note', 'category_id',
    'score_delta', 'verified', 'admin_note',
})

# Both halves of a coop run must agree on these
COOP_SHARED_CHANGELOG_FIELDS = frozenset({'timestamp', 'score', 'category_id'})

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @property
    def session_factory(self):
        """Session factory handed to the service layer"""
        return self.async_session

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        Everything done with the yielded session commits together on a clean
        exit, or rolls back together if an exception escapes the block.
        Callers that react to a write (cache invalidation) must do so only
        after this context has exited.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # Registry operations
    async def create_chapter(self, chapter_name: str, is_multiplayer: bool = False, game_id: int = 1) -> Chapter:
        """Create a chapter (a group of maps belonging to one game)"""
        async with self.transaction() as session:
            chapter = Chapter(chapter_name=chapter_name, is_multiplayer=is_multiplayer, game_id=game_id)
            session.add(chapter)
            await session.flush()
            return chapter

    async def create_map(
        self,
        steam_id: str,
        name: str,
        chapter_id: int,
        default_cat_id: int = 1,
        is_public: bool = True
    ) -> Map:
        """Create a map entry"""
        async with self.transaction() as session:
            map_row = Map(
                steam_id=steam_id,
                name=name,
                chapter_id=chapter_id,
                default_cat_id=default_cat_id,
                is_public=is_public
            )
            session.add(map_row)
            await session.flush()
            return map_row

    async def get_map(self, steam_id: str) -> Optional[Map]:
        """Get a map by its steam id"""
        async with self.get_session() as session:
            result = await session.execute(select(Map).where(Map.steam_id == steam_id))
            return result.scalar_one_or_none()

    # User operations
    async def get_or_create_user(
        self,
        profile_number: str,
        steam_name: Optional[str] = None,
        board_name: Optional[str] = None,
        avatar: Optional[str] = None
    ) -> User:
        """Get a user by profile number, creating it if missing"""
        async with self.transaction() as session:
            user = await session.get(User, profile_number)
            if user is None:
                user = User(
                    profile_number=profile_number,
                    steam_name=steam_name,
                    board_name=board_name,
                    avatar=avatar,
                    banned=False
                )
                session.add(user)
                await session.flush()
                self.logger.info(f"Created user {profile_number}")
            return user

    async def set_user_banned(self, profile_number: str, banned: bool) -> bool:
        """Set a user's banned flag. Returns False if the user does not exist."""
        async with self.transaction() as session:
            user = await session.get(User, profile_number)
            if user is None:
                return False
            user.banned = banned
            return True

    # Changelog operations
    async def insert_changelog(self, values: Dict[str, Any]) -> int:
        """Insert a solo score row and return its id"""
        async with self.transaction() as session:
            await self._ensure_user(session, values['profile_number'])
            row = Changelog(**values)
            session.add(row)
            await session.flush()
            return row.id

    async def update_changelog(self, changelog_id: int, changes: Dict[str, Any]) -> Optional[Changelog]:
        """
        Apply changes to a changelog row. Returns None when the row does not exist.

        For one half of a coop run, score, category and timestamp changes are
        applied to the other half in the same transaction.
        """
        unknown = set(changes) - UPDATABLE_CHANGELOG_FIELDS
        if unknown:
            raise ValueError(f"Cannot update changelog fields: {', '.join(sorted(unknown))}")

        async with self.transaction() as session:
            row = await session.get(Changelog, changelog_id)
            if row is None:
                return None
            for field, value in changes.items():
                setattr(row, field, value)

            shared = {field: value for field, value in changes.items() if field in COOP_SHARED_CHANGELOG_FIELDS}
            if row.coop_id is not None and shared:
                partners = await session.scalars(
                    select(Changelog).where(Changelog.coop_id == row.coop_id, Changelog.id != row.id)
                )
                for partner in partners:
                    for field, value in shared.items():
                        setattr(partner, field, value)
                    self.logger.info(f"Applied {sorted(shared)} to coop partner changelog {partner.id}")
            await session.flush()
            return row

    async def delete_changelog(self, changelog_id: int) -> Optional[Changelog]:
        """Delete a changelog row. Returns the deleted row, or None if it did not exist."""
        async with self.transaction() as session:
            row = await session.get(Changelog, changelog_id)
            if row is None:
                return None
            await session.delete(row)
            return row

    async def insert_coop_bundled(
        self,
        values_1: Dict[str, Any],
        values_2: Dict[str, Any],
        p1_is_host: bool = True
    ) -> int:
        """
        Insert both halves of a cooperative run and the bundle linking them.

        Returns the coop bundle id.
        """
        async with self.transaction() as session:
            await self._ensure_user(session, values_1['profile_number'])
            await self._ensure_user(session, values_2['profile_number'])

            bundle = CoopBundled(
                p_id1=values_1['profile_number'],
                p_id2=values_2['profile_number'],
                p1_is_host=p1_is_host
            )
            session.add(bundle)
            await session.flush()

            row_1 = Changelog(coop_id=bundle.id, **values_1)
            row_2 = Changelog(coop_id=bundle.id, **values_2)
            session.add_all([row_1, row_2])
            await session.flush()

            bundle.cl_id1 = row_1.id
            bundle.cl_id2 = row_2.id
            return bundle.id

    async def _ensure_user(self, session: AsyncSession, profile_number: str) -> User:
        user = await session.get(User, profile_number)
        if user is None:
            user = User(profile_number=profile_number, banned=False)
            session.add(user)
            await session.flush()
        return user
