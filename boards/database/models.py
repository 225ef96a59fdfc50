from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, BigInteger, ForeignKey, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

class Chapter(Base):
    __tablename__ = 'chapters'

    id = Column(Integer, primary_key=True)
    chapter_name = Column(String(200))
    is_multiplayer = Column(Boolean, default=False)
    game_id = Column(Integer, nullable=False, default=1, index=True)

    maps = relationship("Map", back_populates="chapter")

    def __repr__(self):
        return f"<Chapter(id={self.id}, name='{self.chapter_name}', coop={self.is_multiplayer})>"

class Map(Base):
    __tablename__ = 'maps'

    id = Column(Integer, primary_key=True)
    steam_id = Column(String(20), nullable=False, unique=True, index=True)
    lp_id = Column(String(20))
    name = Column(String(200), nullable=False)
    chapter_id = Column(Integer, ForeignKey('chapters.id'), nullable=False)
    default_cat_id = Column(Integer, nullable=False, default=1)
    is_public = Column(Boolean, default=True)

    chapter = relationship("Chapter", back_populates="maps")

    def __repr__(self):
        return f"<Map(steam_id='{self.steam_id}', name='{self.name}')>"

class User(Base):
    __tablename__ = 'users'

    profile_number = Column(String(32), primary_key=True)
    board_name = Column(String(100))   # Preferred over steam_name when set
    steam_name = Column(String(100))
    banned = Column(Boolean, default=False, nullable=False)
    registered = Column(Integer, default=0)
    avatar = Column(Text)
    admin = Column(Integer, default=0)

    @property
    def user_name(self):
        return self.board_name if self.board_name is not None else self.steam_name

    def __repr__(self):
        return f"<User(profile_number='{self.profile_number}', name='{self.user_name}', banned={self.banned})>"

class Changelog(Base):
    """
    Every score ever submitted, solo or one half of a cooperative run.

    Rows are never overwritten by a better time; the board is derived by
    ordering verified, unbanned rows by score.
    """
    __tablename__ = 'changelog'

    id = Column(Integer, primary_key=True)
    timestamp = Column(DateTime, default=func.now())
    profile_number = Column(String(32), ForeignKey('users.profile_number'), nullable=False)
    score = Column(Integer, nullable=False)
    map_id = Column(String(20), ForeignKey('maps.steam_id'), nullable=False)
    demo_id = Column(BigInteger)
    banned = Column(Boolean, default=False, nullable=False)
    youtube_id = Column(String(100))
    previous_id = Column(Integer)
    coop_id = Column(Integer, ForeignKey('coop_bundled.id'), nullable=True)  # Set for cooperative runs
    post_rank = Column(Integer)
    pre_rank = Column(Integer)
    submission = Column(Boolean, default=False, nullable=False)
    note = Column(Text)
    category_id = Column(Integer, nullable=False)
    score_delta = Column(Integer)
    verified = Column(Boolean, default=True, nullable=False)
    admin_note = Column(Text)

    user = relationship("User")

    __table_args__ = (
        Index('ix_changelog_map_category_score', 'map_id', 'category_id', 'score'),
    )

    def __repr__(self):
        return f"<Changelog(id={self.id}, profile_number='{self.profile_number}', map='{self.map_id}', score={self.score})>"

class CoopBundled(Base):
    """Links the two changelog rows that make up one cooperative run."""
    __tablename__ = 'coop_bundled'

    id = Column(Integer, primary_key=True)
    p_id1 = Column(String(32), ForeignKey('users.profile_number'), nullable=False)
    p_id2 = Column(String(32), ForeignKey('users.profile_number'), nullable=False)
    p1_is_host = Column(Boolean, default=True)
    cl_id1 = Column(Integer, nullable=True)  # changelog.id of player 1's row
    cl_id2 = Column(Integer, nullable=True)  # changelog.id of player 2's row

    def __repr__(self):
        return f"<CoopBundled(id={self.id}, p1='{self.p_id1}', p2='{self.p_id2}')>"
