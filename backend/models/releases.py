from sqlalchemy import Column, String, Integer, ForeignKey
from sqlalchemy.orm import relationship
from core.database import BaseModel, GUID, CHAR_LENGTH


class Release(BaseModel):
    """Album, EP or single published by a creator"""
    __tablename__ = "releases"
    __table_args__ = {'extend_existing': True}

    title = Column(String(CHAR_LENGTH), nullable=False)
    cover_art = Column(String(500), nullable=True)
    release_type = Column(String(20), default="ALBUM", nullable=False)  # ALBUM, EP, SINGLE
    creator_id = Column(GUID(), ForeignKey("users.id"), nullable=False)

    creator = relationship("User", lazy="selectin")
    tracks = relationship(
        "ReleaseTrack", back_populates="release", cascade="all, delete-orphan",
        order_by="ReleaseTrack.position", lazy="selectin")


class ReleaseTrack(BaseModel):
    __tablename__ = "release_tracks"
    __table_args__ = {'extend_existing': True}

    release_id = Column(GUID(), ForeignKey("releases.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(CHAR_LENGTH), nullable=False)
    position = Column(Integer, nullable=False, default=1)

    release = relationship("Release", back_populates="tracks")
