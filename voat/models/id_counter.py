from sqlalchemy import Column, Integer, String

from . import Base


class IdCounter(Base):
    __tablename__ = 'id_counters'

    name = Column(String(50), primary_key=True)
    value = Column(Integer, nullable=False, default=0)
