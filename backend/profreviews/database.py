from fastapi import Request
from sqlmodel import create_engine, Session
from .config import DATABASE_URL

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args)

def get_session(request: Request):
    # Sessions bind to the engine the app was built with
    with Session(request.app.state.engine) as session:
        yield session
