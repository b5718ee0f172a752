from sqlalchemy import Column, Integer, Text, text
from sqlalchemy.orm import declarative_base

Base = declarative_base()
metadata = Base.metadata


class Users(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    email = Column(Text, nullable=False, unique=True)
    google_id = Column(Text, unique=True)
    name = Column(Text)
    # JSON list of purchases with embedded bookings (the credit ledger)
    purchases = Column(Text, nullable=False, server_default=text("'[]'"))
    # Bumped on every ledger write; conditional updates compare against it
    version = Column(Integer, nullable=False, server_default=text('0'))
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))


class Availability(Base):
    __tablename__ = 'availability'

    id = Column(Integer, primary_key=True)
    day_of_week = Column(Integer, nullable=False, unique=True)  # 0 = Monday
    start_time = Column(Text, nullable=False)  # "HH:MM"
    end_time = Column(Text, nullable=False)    # "HH:MM"
    is_available = Column(Integer, nullable=False, server_default=text('1'))


class BlockedDates(Base):
    __tablename__ = 'blocked_dates'

    id = Column(Integer, primary_key=True)
    blocked_date = Column(Text, nullable=False, unique=True)  # "YYYY-MM-DD"
    reason = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))
