from quiz_engine.db.database import Base, engine
from quiz_engine.models import user, quiz
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)
logger.info(f"Tables created successfully: {', '.join(sorted(Base.metadata.tables))}")
