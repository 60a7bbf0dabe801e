# seed.py
import logging
from datetime import time

from sqlalchemy.orm import Session

import models
from database import Base, SessionLocal, engine


def create_initial_data(db: Session) -> bool:
    """Заполняет пустую базу услугами, мастерами и недельными графиками.

    Возвращает False, если услуги уже есть и база не трогалась.
    """
    if db.query(models.Service).count() > 0:
        logging.info("Initial data already present, skipping")
        return False

    logging.info("Creating initial services data...")
    s_manicure = models.Service(name="Маникюр с покрытием", price=2000, duration_minutes=90)
    s_haircut = models.Service(name="Женская стрижка", price=2500, duration_minutes=60)
    s_facial = models.Service(name="Чистка лица", price=3500, duration_minutes=75)
    s_eyelash = models.Service(name="Наращивание ресниц", price=3000, duration_minutes=120)
    s_eyebrow = models.Service(name="Оформление бровей", price=1500, duration_minutes=45)
    db.add_all([s_manicure, s_haircut, s_facial, s_eyelash, s_eyebrow])

    logging.info("Creating initial masters data...")
    m1 = models.Master(name="Анна Смирнова", specialization="Мастер маникюра", description="Опыт 5 лет.")
    m2 = models.Master(name="Елена Волкова", specialization="Парикмахер-стилист",
                       description="Сложные окрашивания.", break_minutes=15)
    m3 = models.Master(name="Ольга Морозова", specialization="Косметолог-эстетист",
                       description="Медицинское образование.")
    m1.services.extend([s_manicure, s_eyebrow])
    m2.services.append(s_haircut)
    m3.services.extend([s_facial, s_eyelash, s_eyebrow])
    db.add_all([m1, m2, m3])
    db.flush()

    schedules = [
        models.Schedule(master_id=m1.id, day_of_week=d, start_time=time(10, 0), end_time=time(19, 0)) for d in [1, 3, 5]
    ]
    schedules.extend([
        models.Schedule(master_id=m2.id, day_of_week=d, start_time=time(9, 0), end_time=time(18, 0)) for d in [2, 4, 6]
    ])
    schedules.extend([
        models.Schedule(master_id=m3.id, day_of_week=d, start_time=time(11, 0), end_time=time(20, 0)) for d in [1, 3, 5, 7]
    ])
    db.add_all(schedules)
    db.commit()
    logging.info("Initial data created.")
    return True


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        create_initial_data(db)
