from fastapi import Request

from database.db import GatepassStore


def get_store(request: Request) -> GatepassStore:
    return request.app.state.store
