#Purpose: The OSRM "adapter/client" (the routing collaborator).
#Sole responsibility: talk to OSRM via HTTP and return normalized outputs.
#Encapsulates OSRM-specific details:
#coordinate formatting (lng,lat)
#URL construction (/route)
#timeouts/error handling
#parsing response JSON (GeoJSON geometry) into RouteResult
#It should not contain simulation or detour rules.


from dotenv import load_dotenv
import logging
import os
from typing import List, Optional, Sequence
import requests

from routing.models import GeoPoint, RouteResult

# Read OSRM base URL from environment
# Example in .env:
# BASE_URL=http://router.project-osrm.org
load_dotenv()

logger = logging.getLogger(__name__)


class RoutingUnavailableError(Exception):
    """No route found, or the routing service could not be reached."""
    pass


class OSRMClient:
    """
    OSRM Adapter / Client

    Sole responsibility:
    - Talk to OSRM via HTTP
    - Convert internal GeoPoint -> OSRM (lng,lat)
    - Return RouteResult with the full road geometry

    """
    def __init__(self, base_url: Optional[str] = None, profile: str = "driving", timeout: int = 10):
        self.base_url = (base_url or os.getenv("BASE_URL") or "").rstrip("/")
        self.timeout = timeout #seconds to wait for OSRM before giving up
        self.profile = profile #the mode of transportation (driving, walking, cycling)

        if not self.base_url:
            raise ValueError("OSRM base URL not set. Please set BASE_URL in the .env file.")

        #----------------
        # Internal helpers
        #----------------
    def format_coordinates(self, coords: Sequence[GeoPoint]) -> str:
        """Convert GeoPoints to OSRM format 'lng,lat;lng,lat;...'"""
        return ';'.join(f"{point.lng},{point.lat}" for point in coords)

        #----------------
        # route service
        #----------------
    def get_route(self, origin: GeoPoint, destination: GeoPoint,
                  via: Sequence[GeoPoint] = ()) -> RouteResult:
        """
        Calls the OSRM /route endpoint for origin -> via... -> destination and
        returns the first route with its full geometry.

        Raises:
            RoutingUnavailableError: network failure, bad response, or no route.
        """
        coordinates = [origin, *via, destination]
        url = f"{self.base_url}/route/v1/{self.profile}/{self.format_coordinates(coordinates)}"

        try:
            response = requests.get(
                url,
                params={
                    "overview": "full", # we need every point to animate the truck
                    "geometries": "geojson",
                },
                timeout=self.timeout,
            )
            data = response.json()
        except requests.RequestException as e:
            raise RoutingUnavailableError(f"OSRM request failed: {e}") from e
        except ValueError as e:
            raise RoutingUnavailableError(f"OSRM returned a non-JSON body (HTTP {response.status_code})") from e

        #validating OSRM response
        if data.get("code") != "Ok" or not data.get("routes"):
            raise RoutingUnavailableError(f"OSRM error: {data.get('message', data.get('code', 'no route found'))}")

        route = data["routes"][0] #take the first route (OSRM may return alternatives)
        points: List[GeoPoint] = [
            GeoPoint(lat=lat, lng=lng) for lng, lat in route["geometry"]["coordinates"]
        ]
        if not points:
            raise RoutingUnavailableError("OSRM returned an empty geometry")

        logger.debug(f"OSRM route {origin} -> {destination} ({len(via)} via): "
                     f"{route['distance'] / 1000:.1f} km, {len(points)} points")

        #Normalize output to internal format
        return RouteResult(
            distance_km=route["distance"] / 1000.0,
            points=points,
            duration_s=route.get("duration"),
        )
