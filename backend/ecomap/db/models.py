from sqlalchemy import Column, String, Text, JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class EcosystemDocument(Base):
    __tablename__ = "ecosystems"

    id = Column(String(64), primary_key=True)
    name = Column(Text, nullable=False)
    section = Column(String(64), nullable=False, default="general")
    nodes = Column(JSON, nullable=False, default=list)
    edges = Column(JSON, nullable=False, default=list)
    # ISO-8601 UTC with fixed width, so string order == time order
    created_at = Column(String(32), nullable=False)
    updated_at = Column(String(32), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "section": self.section,
            "nodes": self.nodes or [],
            "edges": self.edges or [],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
