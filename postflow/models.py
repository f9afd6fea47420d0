"""SQLAlchemy ORM models for agencies, clients, uploads, posts, and analytics."""

import enum
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


class PostStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUGGEST_CHANGES = "SUGGEST_CHANGES"
    PUBLISHED = "PUBLISHED"


class UploadStatus(str, enum.Enum):
    RECEIVED = "received"
    PARSED = "parsed"
    NORMALIZED = "normalized"
    PERSISTED = "persisted"
    FINALIZED = "finalized"
    FAILED = "failed"


class Agency(Base):
    __tablename__ = "agencies"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String, nullable=False)
    email: str = Column(String, nullable=False, unique=True)
    created_at: datetime = Column(DateTime, default=func.now())

    clients = relationship("Client", back_populates="agency")

    def __repr__(self) -> str:
        return f"<Agency id={self.id} name={self.name}>"


class Client(Base):
    __tablename__ = "clients"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String, nullable=False)
    agency_id: int = Column(
        Integer, ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False
    )
    # Free-text label as found in the posts spreadsheet, e.g. "GMT +8" or "EST"
    timezone: str | None = Column(String(50), nullable=True)
    created_at: datetime = Column(DateTime, default=func.now())

    agency = relationship("Agency", back_populates="clients")
    posts = relationship("Post", back_populates="client", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("agency_id", "name", name="uq_client_agency_name"),
    )

    def __repr__(self) -> str:
        return f"<Client id={self.id} name={self.name} agency={self.agency_id}>"


class Upload(Base):
    """One file-import attempt and its outcome."""

    __tablename__ = "uploads"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    client_id: int | None = Column(
        Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=True
    )
    uploaded_by_id: int = Column(
        Integer, ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False
    )
    filename: str = Column(String, nullable=False)
    original_name: str = Column(String, nullable=False)
    file_hash: str | None = Column(String(64), nullable=True, index=True)
    format: str | None = Column(String(30), nullable=True)
    status: str = Column(String(20), nullable=False, default=UploadStatus.RECEIVED.value)
    processed: bool = Column(Boolean, nullable=False, default=False)
    records_created: int = Column(Integer, default=0)
    records_updated: int = Column(Integer, default=0)
    records_skipped: int = Column(Integer, default=0)
    posts_count: int = Column(Integer, default=0)
    timezone: str | None = Column(String(50), nullable=True)
    error_message: str | None = Column(Text, nullable=True)
    upload_date: datetime = Column(DateTime, default=func.now())

    def __repr__(self) -> str:
        return f"<Upload id={self.id} file={self.original_name} status={self.status}>"


class Analytics(Base):
    """Daily account-level analytics for one client."""

    __tablename__ = "analytics"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    client_id: int = Column(
        Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    upload_id: int | None = Column(
        Integer, ForeignKey("uploads.id", ondelete="SET NULL"), nullable=True
    )
    date = Column(Date, nullable=False)
    impressions: int = Column(Integer, default=0)
    engagements: int = Column(Integer, default=0)
    retweets: int = Column(Integer, default=0)
    replies: int = Column(Integer, default=0)
    likes: int = Column(Integer, default=0)
    profile_clicks: int = Column(Integer, default=0)
    url_clicks: int = Column(Integer, default=0)
    hashtag_clicks: int = Column(Integer, default=0)
    detail_expands: int = Column(Integer, default=0)
    permalink_clicks: int = Column(Integer, default=0)
    app_opens: int = Column(Integer, default=0)
    app_installs: int = Column(Integer, default=0)
    follows: int = Column(Integer, default=0)
    email_tweet: int = Column(Integer, default=0)
    dial_phone: int = Column(Integer, default=0)
    media_views: int = Column(Integer, default=0)
    media_engagements: int = Column(Integer, default=0)
    engagement_rate: float = Column(Float, default=0.0)
    click_through_rate: float = Column(Float, default=0.0)
    created_at: datetime = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint("client_id", "date", name="uq_analytics_client_date"),
    )

    def __repr__(self) -> str:
        return f"<Analytics client={self.client_id} date={self.date} impressions={self.impressions}>"


class TweetAnalytics(Base):
    """Per-tweet analytics from a Typefully export."""

    __tablename__ = "tweet_analytics"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    client_id: int = Column(
        Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    upload_id: int | None = Column(
        Integer, ForeignKey("uploads.id", ondelete="SET NULL"), nullable=True
    )
    tweet_id: str = Column(String, nullable=False)
    tweet_url: str = Column(String, default="")
    text: str = Column(Text, default="")
    created_at: datetime = Column(DateTime, nullable=False)
    retweet_count: int = Column(Integer, default=0)
    reply_count: int = Column(Integer, default=0)
    like_count: int = Column(Integer, default=0)
    quote_count: int = Column(Integer, default=0)
    impression_count: int = Column(Integer, default=0)
    user_profile_clicks: int = Column(Integer, default=0)
    bookmark_count: int = Column(Integer, default=0)
    url_link_clicks: int = Column(Integer, default=0)
    total_engagements: int = Column(Integer, default=0)
    engagement_rate: float = Column(Float, default=0.0)
    is_thread_head: bool = Column(Boolean, default=False)
    is_thread_part: bool = Column(Boolean, default=False)
    is_note_tweet: bool = Column(Boolean, default=False)
    conversation_length: int = Column(Integer, default=0)
    updated_at: datetime = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("client_id", "tweet_id", name="uq_tweet_client_tweet"),
    )

    def __repr__(self) -> str:
        return f"<TweetAnalytics client={self.client_id} tweet={self.tweet_id}>"


class FollowerAnalytics(Base):
    __tablename__ = "follower_analytics"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    client_id: int = Column(
        Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    upload_id: int | None = Column(
        Integer, ForeignKey("uploads.id", ondelete="SET NULL"), nullable=True
    )
    start_date: date = Column(Date, nullable=False)
    end_date: date = Column(Date, nullable=False)
    follower_count: int = Column(Integer, nullable=False, default=0)
    # Signed: a week can lose followers
    followers_gained: int = Column(Integer, default=0)
    created_at: datetime = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "client_id", "start_date", "end_date", name="uq_followers_client_range"
        ),
    )

    def __repr__(self) -> str:
        return f"<FollowerAnalytics client={self.client_id} {self.start_date}..{self.end_date} count={self.follower_count}>"


class Post(Base):
    """A drafted post awaiting (or past) client approval."""

    __tablename__ = "posts"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    client_id: int = Column(
        Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    upload_id: int | None = Column(
        Integer, ForeignKey("uploads.id", ondelete="SET NULL"), nullable=True
    )
    content: str = Column(String(1000), nullable=False)
    tweet_text: str | None = Column(Text, nullable=True)
    typefully_url: str = Column(String, nullable=False)
    # Naive UTC
    scheduled_date: datetime | None = Column(DateTime, nullable=True)
    status: PostStatus = Column(
        Enum(PostStatus, native_enum=False, length=20),
        nullable=False,
        default=PostStatus.PENDING,
    )
    feedback: str | None = Column(Text, nullable=True)
    created_at: datetime = Column(DateTime, default=func.now())
    updated_at: datetime = Column(DateTime, default=func.now(), onupdate=func.now())

    client = relationship("Client", back_populates="posts")

    __table_args__ = (
        UniqueConstraint("client_id", "typefully_url", name="uq_post_client_url"),
    )

    def __repr__(self) -> str:
        return f"<Post id={self.id} client={self.client_id} status={self.status}>"
