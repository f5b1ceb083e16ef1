"""Request dependencies — reach the services built in create_app().

Learn: The DataClient and RealtimePipeline live on app.state, so routes
get them through Depends() instead of importing module globals. Tests
build their own app with fake backends and nothing else changes.
"""

from fastapi import Request

from folio.db.client import DataClient
from folio.realtime.pipeline import RealtimePipeline


def get_data(request: Request) -> DataClient:
    return request.app.state.data


def get_realtime(request: Request) -> RealtimePipeline:
    return request.app.state.realtime
