"""Gateway services: request composition, image fetching and merging."""

from image_gateway.gateway.services.gateway import Admission, RequestGateway
from image_gateway.gateway.services.image_fetcher import ImageFetcher, ImageFetchError

__all__ = [
    "Admission",
    "RequestGateway",
    "ImageFetcher",
    "ImageFetchError",
]
