"""Shared fixtures: a callback-driven mock of the Okta groups API."""

from __future__ import annotations

import json
import re
from typing import Optional
from urllib.parse import parse_qs, unquote, urlencode, urlsplit

import pytest
import responses

from dirsync.config import OktaConfig, ServiceAccount, SyncConfig

BASE_URL = "https://example.okta.test"
API_KEY = "APITOKEN"
UPDATED_GROUP = "user-updated"


class MockOkta:
    """Serves /api/v1/groups and /api/v1/groups/{id}/users from a user -> groups map.

    Without a filter the group listing hides UPDATED_GROUP; with a
    "lastUpdated" filter it returns only UPDATED_GROUP. Groups are served
    ``groups_page_size`` per page and members ``members_page_size`` per page,
    each page linking to the next via the Link header.
    """

    def __init__(
        self,
        user_groups: dict[str, list[str]],
        groups_page_size: int = 1,
        members_page_size: int = 0,
        group_timestamps: Optional[dict[str, str]] = None,
        ignore_filter: bool = False,
    ) -> None:
        self.user_groups = user_groups
        self.groups_page_size = groups_page_size
        self.members_page_size = members_page_size
        self.group_timestamps = group_timestamps or {}
        self.ignore_filter = ignore_filter
        self.group_requests: list[dict[str, list[str]]] = []
        self.member_requests: list[str] = []

    @property
    def all_groups(self) -> list[str]:
        return sorted({g for groups in self.user_groups.values() for g in groups})

    def register(self, rsps: responses.RequestsMock) -> "MockOkta":
        rsps.add_callback(
            responses.GET,
            re.compile(rf"{re.escape(BASE_URL)}/api/v1/groups(\?.*)?$"),
            callback=self._groups,
        )
        rsps.add_callback(
            responses.GET,
            re.compile(rf"{re.escape(BASE_URL)}/api/v1/groups/[^/?]+/users(\?.*)?$"),
            callback=self._members,
        )
        return self

    def _forbidden(self, request) -> bool:
        return request.headers.get("Authorization") != f"SSWS {API_KEY}"

    def _page(self, request, items: list[dict], page_size: int):
        parts = urlsplit(request.url)
        query = parse_qs(parts.query)
        after = query.get("after", [""])[0]
        start = 0
        if after:
            ids = [item["id"] for item in items]
            start = ids.index(after) + 1 if after in ids else len(items)
        if page_size <= 0:
            page_size = len(items) or 1
        page = items[start:start + page_size]

        headers = {"Content-Type": "application/json"}
        if page:
            # Like Okta, keep linking while the last page was non-empty
            next_query = {k: v[0] for k, v in query.items()}
            next_query["after"] = page[-1]["id"]
            next_url = f"{parts.scheme}://{parts.netloc}{parts.path}?{urlencode(next_query)}"
            headers["Link"] = f'<{next_url}>; rel="next"'
        return 200, headers, json.dumps(page)

    def _groups(self, request):
        if self._forbidden(request):
            return 403, {}, "forbidden"
        query = parse_qs(urlsplit(request.url).query)
        self.group_requests.append(query)
        updated_only = "lastUpdated " in query.get("filter", [""])[0]

        groups = []
        for group in self.all_groups:
            if not self.ignore_filter:
                if updated_only and group != UPDATED_GROUP:
                    continue
                if not updated_only and group == UPDATED_GROUP:
                    continue
            record = {"id": group, "profile": {"name": f"{group}-name"}}
            if group in self.group_timestamps:
                record["lastUpdated"] = self.group_timestamps[group]
            groups.append(record)
        return self._page(request, groups, self.groups_page_size)

    def _members(self, request):
        if self._forbidden(request):
            return 403, {}, "forbidden"
        group = unquote(urlsplit(request.url).path.split("/")[-2])
        self.member_requests.append(group)

        members = [
            {"id": email, "profile": {"email": email, "login": email}}
            for email, groups in sorted(self.user_groups.items())
            if group in groups
        ]
        return self._page(request, members, self.members_page_size)


def make_config(api_key: str = API_KEY, **overrides) -> SyncConfig:
    okta = OktaConfig(
        provider_url=BASE_URL,
        service_account=ServiceAccount(api_key=api_key),
        batch_size=200,
        request_timeout=5.0,
    )
    return SyncConfig(okta=okta, **overrides)


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


@pytest.fixture
def config() -> SyncConfig:
    return make_config()
