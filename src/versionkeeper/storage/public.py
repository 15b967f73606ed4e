"""Client for the public registry image service."""

from __future__ import annotations

from httpx import AsyncClient, HTTPError
from pydantic import BaseModel, ValidationError
from structlog.stdlib import BoundLogger

from ..exceptions import PublicRegistryError
from ..models.domain.version import LatestImageInfo

__all__ = ["PublicRegistryClient"]


class _LatestImageResponse(BaseModel):
    """Reply from the latest image route."""

    source: str
    tag: str


class PublicRegistryClient:
    """Ask the public registry image service for the latest component image.

    Parameters
    ----------
    base_url
        Base URL of the image service.
    http_client
        Client to use to make requests.
    logger
        Logger for log messages.
    """

    def __init__(
        self, *, base_url: str, http_client: AsyncClient, logger: BoundLogger
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = http_client
        self._logger = logger

    async def get_latest_image_info(self, component: str) -> LatestImageInfo:
        """Get the latest published image of a component.

        Parameters
        ----------
        component
            Name of the component.

        Returns
        -------
        LatestImageInfo
            Repository and tag of the latest image.

        Raises
        ------
        PublicRegistryError
            Unable to retrieve the image information.
        """
        url = f"{self._base_url}/v1/deployment/image/{component}/latest"
        try:
            r = await self._client.get(url)
            r.raise_for_status()
            reply = _LatestImageResponse.model_validate(r.json())
        except HTTPError as e:
            raise PublicRegistryError.from_exception(e) from e
        except (ValidationError, ValueError) as e:
            error = f"{type(e).__name__}: {e!s}"
            msg = f"Cannot parse response from image service: {error}"
            raise PublicRegistryError(msg, method="GET", url=url) from e
        self._logger.debug(
            "Retrieved latest public image",
            component=component,
            source=reply.source,
            tag=reply.tag,
        )
        return LatestImageInfo(source=reply.source, tag=reply.tag)
