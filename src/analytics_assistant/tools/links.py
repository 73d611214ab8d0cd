"""
Short link tools. Links belong to the organization that owns the website.
"""

import re
from typing import Any
from urllib.parse import urlparse

from pydantic import Field

from ..backend.client import BoundBackend
from ..errors import BadRequestError, NotFoundError
from .base import ConfirmableInput, MutatingTool, Tool, ToolInput
from .common import is_iso_datetime
from .confirmation import Commit, Preview

SLUG_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def is_http_url(value: str | None) -> bool:
    if not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class ListLinksInput(ToolInput):
    pass


class LinkIdInput(ToolInput):
    id: str = Field(min_length=1, description="The link ID")


class SearchLinksInput(ToolInput):
    query: str = Field(min_length=1, description="Matches name, slug or target URL")


class CreateLinkInput(ConfirmableInput):
    name: str = Field(min_length=1, max_length=255, description="Descriptive name, e.g. 'Black Friday Sale'")
    target_url: str = Field(description="Destination URL to redirect to")
    slug: str | None = Field(
        default=None,
        min_length=3,
        max_length=50,
        description="Custom slug ('sale' creates /sale). Auto-generated if omitted.",
    )
    expires_at: str | None = Field(default=None, description="Expiration date in ISO format (e.g. 2024-12-31)")
    expired_redirect_url: str | None = Field(default=None, description="URL to redirect to after expiry")
    og_title: str | None = Field(default=None, max_length=200, description="Open Graph title")
    og_description: str | None = Field(default=None, max_length=500, description="Open Graph description")
    og_image_url: str | None = Field(default=None, description="Open Graph image URL")


class UpdateLinkInput(ConfirmableInput):
    id: str = Field(min_length=1, description="The link ID to update")
    name: str | None = Field(default=None, min_length=1, max_length=255, description="New name")
    target_url: str | None = Field(default=None, description="New target URL")
    slug: str | None = Field(default=None, min_length=3, max_length=50, description="New slug")
    expires_at: str | None = Field(default=None, description="New expiration date in ISO format")
    expired_redirect_url: str | None = Field(default=None, description="New expired redirect URL")
    og_title: str | None = Field(default=None, max_length=200, description="New OG title")
    og_description: str | None = Field(default=None, max_length=500, description="New OG description")
    og_image_url: str | None = Field(default=None, description="New OG image URL")


class DeleteLinkInput(ConfirmableInput):
    id: str = Field(min_length=1, description="The link ID to delete")


def validate_link(params: CreateLinkInput | UpdateLinkInput) -> list[str]:
    problems = []
    if params.slug is not None and not SLUG_PATTERN.match(params.slug):
        problems.append("slug may only contain letters, numbers, hyphens and underscores")
    if params.expires_at is not None and not is_iso_datetime(params.expires_at):
        problems.append("expires_at must be an ISO 8601 date")
    for name in ("target_url", "expired_redirect_url", "og_image_url"):
        value = getattr(params, name)
        if value is not None and not is_http_url(value):
            problems.append(f"{name} must be a valid http(s) URL")
    if isinstance(params, CreateLinkInput) and not params.target_url:
        problems.append("target_url is required")
    return problems


LINK_FIELDS = {
    "name": "name",
    "target_url": "targetUrl",
    "slug": "slug",
    "expires_at": "expiresAt",
    "expired_redirect_url": "expiredRedirectUrl",
    "og_title": "ogTitle",
    "og_description": "ogDescription",
    "og_image_url": "ogImageUrl",
}

LINK_LABELS = {
    "name": "Name",
    "targetUrl": "Target",
    "slug": "Slug",
    "expiresAt": "Expires",
    "expiredRedirectUrl": "Expired redirect",
    "ogTitle": "OG title",
    "ogDescription": "OG description",
    "ogImageUrl": "OG image",
}


def link_payload(params: CreateLinkInput | UpdateLinkInput) -> dict[str, Any]:
    """Backend field names for every provided link field."""
    return {
        backend_name: getattr(params, name)
        for name, backend_name in LINK_FIELDS.items()
        if getattr(params, name) is not None
    }


def summarize_link(link: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": link.get("id"),
        "name": link.get("name"),
        "slug": link.get("slug"),
        "targetUrl": link.get("targetUrl"),
        "expiresAt": link.get("expiresAt"),
    }


def create_link_tools(backend: BoundBackend) -> list[Tool]:
    """Link tools bound to the organization of the run's website."""
    website_id = backend.ctx.resource_id
    organization: dict[str, str] = {}

    async def organization_id() -> str:
        if "id" not in organization:
            website = await backend.call("websites.getById", {"id": website_id})
            if not website:
                raise NotFoundError("Website not found")
            org_id = website.get("organizationId")
            if not org_id:
                raise BadRequestError(
                    "This website is not associated with an organization. Links require an organization."
                )
            organization["id"] = org_id
        return organization["id"]

    async def fetch_all() -> list[dict[str, Any]]:
        result = await backend.call("links.list", {"organizationId": await organization_id()})
        return result if isinstance(result, list) else []

    async def fetch_one(link_id: str) -> dict[str, Any]:
        link = await backend.call("links.get", {"id": link_id, "organizationId": await organization_id()})
        if not link:
            raise NotFoundError(f"Link {link_id} not found")
        return link

    async def list_links(params: ListLinksInput) -> Any:
        links = await fetch_all()
        return {"links": [summarize_link(link) for link in links], "count": len(links)}

    async def get_link(params: LinkIdInput) -> Any:
        return await fetch_one(params.id)

    async def search_links(params: SearchLinksInput) -> Any:
        needle = params.query.lower()
        matches = [
            link for link in await fetch_all()
            if needle in str(link.get("name", "")).lower()
            or needle in str(link.get("slug", "")).lower()
            or needle in str(link.get("targetUrl", "")).lower()
        ]
        return {"links": [summarize_link(link) for link in matches], "count": len(matches)}

    async def preview_create(params: CreateLinkInput) -> Preview:
        return Preview(
            tool_name="create_link",
            message="Please review the link details below and confirm if you want to create it:",
            fields={
                "name": params.name,
                "targetUrl": params.target_url,
                "slug": params.slug or "(auto-generated)",
                "expiresAt": params.expires_at or "Never",
                "expiredRedirectUrl": params.expired_redirect_url or "None",
                "ogTitle": params.og_title or "None",
                "ogDescription": params.og_description or "None",
                "ogImageUrl": params.og_image_url or "None",
            },
        )

    async def commit_create(params: CreateLinkInput) -> Commit:
        payload = {"organizationId": await organization_id(), **link_payload(params)}
        result = await backend.call("links.create", payload)
        return Commit(
            tool_name="create_link",
            message=f'Link "{params.name}" created successfully!',
            payload=result,
        )

    async def preview_update(params: UpdateLinkInput) -> Preview:
        current = await fetch_one(params.id)
        updates = link_payload(params)
        changes = []
        for key, label in LINK_LABELS.items():
            if key in updates and updates[key] != current.get(key):
                changes.append(f"{label}: {current.get(key) or '(none)'} → {updates[key]}")

        if not changes:
            return Preview(
                tool_name="update_link",
                message="No changes detected. The link will remain unchanged.",
                fields=summarize_link(current),
                confirmation_required=False,
            )
        return Preview(
            tool_name="update_link",
            message=f'Please review the changes to "{current.get("name")}":',
            fields=summarize_link(current),
            changes=changes,
        )

    async def commit_update(params: UpdateLinkInput) -> Commit:
        await fetch_one(params.id)
        result = await backend.call("links.update", {"id": params.id, **link_payload(params)})
        name = result.get("name") if isinstance(result, dict) else params.name
        return Commit(
            tool_name="update_link",
            message=f'Link "{name or params.id}" updated successfully!',
            payload=result,
        )

    async def preview_delete(params: DeleteLinkInput) -> Preview:
        link = await fetch_one(params.id)
        return Preview(
            tool_name="delete_link",
            message="Are you sure you want to delete this link? It will stop redirecting immediately.",
            fields=summarize_link(link),
        )

    async def commit_delete(params: DeleteLinkInput) -> Commit:
        link = await fetch_one(params.id)
        await backend.call("links.delete", {"id": params.id})
        return Commit(
            tool_name="delete_link",
            message=f'Link "{link.get("name")}" (/{link.get("slug")}) has been deleted.',
            payload={"id": params.id},
        )

    return [
        Tool(
            name="list_links",
            description="List all short links of the website's organization.",
            input_model=ListLinksInput,
            handler=list_links,
        ),
        Tool(
            name="get_link",
            description="Get a short link by ID.",
            input_model=LinkIdInput,
            handler=get_link,
        ),
        Tool(
            name="search_links",
            description="Search links by name, slug or target URL.",
            input_model=SearchLinksInput,
            handler=search_links,
        ),
        MutatingTool(
            name="create_link",
            description=(
                "Create a new short link. REQUIRES EXPLICIT USER CONFIRMATION: call with "
                "confirmed=false first to get a preview."
            ),
            input_model=CreateLinkInput,
            preview=preview_create,
            commit=commit_create,
            validator=validate_link,
        ),
        MutatingTool(
            name="update_link",
            description=(
                "Update an existing short link. REQUIRES EXPLICIT USER CONFIRMATION: call with "
                "confirmed=false first to see the changes."
            ),
            input_model=UpdateLinkInput,
            preview=preview_update,
            commit=commit_update,
            validator=validate_link,
        ),
        MutatingTool(
            name="delete_link",
            description=(
                "Delete a short link. REQUIRES EXPLICIT USER CONFIRMATION: call with "
                "confirmed=false first."
            ),
            input_model=DeleteLinkInput,
            preview=preview_delete,
            commit=commit_delete,
        ),
    ]
