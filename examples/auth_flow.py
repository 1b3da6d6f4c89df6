"""Authenticated API load test — log in once, reuse the token.

The setup hook logs in a single time and returns the token; requests read it
from the iteration context through a header callable. Run with:

    loadramp run examples/auth_flow.py --base-url http://localhost:8080
"""

from __future__ import annotations

import random

from loadramp import Check, HttpClient, IterationContext, Pause, Request, scenario, setup


def _auth(ctx: IterationContext) -> dict[str, str]:
    return {"Authorization": f"Bearer {ctx.setup_data['token']}"}


def _item_path(ctx: IterationContext) -> str:  # noqa: ARG001
    return f"/items/{random.randint(1, 500)}"  # noqa: S311


@scenario(
    name="Auth Flow Load Test",
    stages=[("20s", 20), ("1m", 20), ("20s", 0)],
    thresholds={
        "http_req_failed": ["rate<0.05"],
        "checks": [{"threshold": "rate>0.95", "abort_on_fail": True}],
    },
)
class AuthFlowScenario:
    """List and fetch items with a shared bearer token."""

    steps = [
        Request("GET", "/items", headers=_auth, name="List Items"),
        Check.status("list is 200", 200),
        Pause((0.5, 2.0)),
        Request("GET", _item_path, headers=_auth, name="Get Item"),
        Check.status("item is 200 or 404", 200, 404),
        Pause((0.5, 2.0)),
    ]

    @setup
    async def login(self, client: HttpClient) -> dict[str, str]:
        """Log in once and share the token with every virtual user."""
        response = await client.post(
            "/auth/login",
            json={"email": "test@example.com", "password": "test-password-12345"},  # noqa: S106
        )
        if response.status != 200:
            msg = f"Login failed with status {response.status}"
            raise RuntimeError(msg)
        return {"token": response.json()["token"]}
