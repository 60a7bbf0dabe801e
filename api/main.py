# api/main.py
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import API_HOST, API_PORT, LOG_LEVEL, SEED_DEMO_DATA
from database import Base, SessionLocal, engine
from api.routers import appointments, catalog, masters
from seed import create_initial_data
from services.errors import BookingError

# Настройка логирования
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.info("Application startup...")
    Base.metadata.create_all(bind=engine)
    if SEED_DEMO_DATA:
        with SessionLocal() as db:
            create_initial_data(db)
    yield
    logging.info("Application shutdown...")


app = FastAPI(title="Beauty Salon Booking API", lifespan=lifespan)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code in (403, 409):
        logging.warning(f"{request.method} {request.url.path} rejected: {exc.detail}")
    else:
        logging.info(f"{request.method} {request.url.path} rejected: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Подключаем роутеры
app.include_router(appointments.router)
app.include_router(masters.router)
app.include_router(catalog.router)


@app.get("/")
def read_root():
    return {"message": "Beauty Salon Booking API is running"}


def run():
    uvicorn.run("api.main:app", host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    run()
