from typing import Dict, Optional
from urllib.parse import quote

import requests
import structlog
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from settings import PATIENT_SERVICE_TIMEOUT, PATIENT_SERVICE_TOKEN, PATIENT_SERVICE_URL


class IdentityLookupError(Exception):
    """The patient service could not give a yes/no answer."""


class PatientServiceGateway:
    """
    Asks the patient service whether a patient reference exists.

    200 means yes, 404 means no. Anything else (other statuses, timeouts,
    refused connections) raises IdentityLookupError.
    """

    def __init__(
        self,
        base_url: str = PATIENT_SERVICE_URL,
        token: Optional[str] = PATIENT_SERVICE_TOKEN,
        timeout: float = PATIENT_SERVICE_TIMEOUT,
        retries: int = 2,
    ):
        self.log = structlog.get_logger(__name__).bind(component="PatientServiceGateway")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        headers: Dict[str, str] = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.session.headers.update(headers)

        retry_cfg = Retry(
            total=retries,
            backoff_factor=0.2,
            status_forcelist=[502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_cfg)
        for scheme in ("https://", "http://"):
            self.session.mount(scheme, adapter)

    def verify_patient_exists(self, patient_ref: str) -> bool:
        url = f"{self.base_url}/api/patients/{quote(patient_ref, safe='')}"
        log = self.log.bind(patient_ref=patient_ref, url=url)

        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            log.warning("patient_lookup_failed", error=str(exc))
            raise IdentityLookupError(str(exc)) from exc

        if resp.status_code == 200:
            return True
        if resp.status_code == 404:
            log.info("patient_not_found")
            return False

        log.warning("patient_lookup_unexpected_status", status_code=resp.status_code)
        raise IdentityLookupError(f"patient service answered HTTP {resp.status_code}")

    def close(self) -> None:
        self.session.close()
