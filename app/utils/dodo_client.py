import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger("[PAYMENTS]")


class DodoAPIError(Exception):
	"""Помилка від Dodo Payments API (status_code вендора або 502)."""

	def __init__(self, status_code: int, message: str):
		super().__init__(message)
		self.status_code = status_code
		self.message = message


class DodoTimeoutError(DodoAPIError):
	def __init__(self, message: str = "Dodo API call timed out"):
		super().__init__(408, message)


def _error_message(response: httpx.Response) -> str:
	try:
		body = response.json()
	except ValueError:
		return response.text or f"HTTP {response.status_code}"
	if isinstance(body, dict):
		return str(body.get("message") or body.get("error") or body.get("code") or body)
	return str(body)


class DodoClient:
	"""
	Тонкий REST-клієнт Dodo Payments.
	Кожен виклик відкриває власний httpx.AsyncClient.
	"""

	def __init__(self, api_key: str, base_url: str, timeout: float = 15.0):
		self.api_key = api_key
		self.base_url = base_url.rstrip("/")
		self.timeout = timeout

	async def _request(
		self,
		method: str,
		path: str,
		json: Optional[dict] = None,
		params: Optional[dict] = None,
	) -> Dict[str, Any]:
		url = f"{self.base_url}{path}"
		try:
			async with httpx.AsyncClient(timeout=self.timeout) as client:
				response = await client.request(
					method,
					url,
					headers={"Authorization": f"Bearer {self.api_key}"},
					json=json,
					params=params,
				)
		except httpx.TimeoutException as e:
			raise DodoTimeoutError(f"Dodo API call timed out: {method} {path}") from e
		except httpx.HTTPError as e:
			raise DodoAPIError(502, f"Dodo API unreachable: {e}") from e

		if response.status_code >= 400:
			message = _error_message(response)
			logger.warning("Dodo %s %s -> %s: %s", method, path, response.status_code, message)
			raise DodoAPIError(response.status_code, message)

		if not response.content:
			return {}
		try:
			return response.json()
		except ValueError:
			raise DodoAPIError(502, "Dodo API did not return JSON")

	# **************    Checkout sessions
	async def create_checkout_session(self, payload: dict) -> Dict[str, Any]:
		return await self._request("POST", "/checkouts", json=payload)

	async def get_checkout_session(self, session_id: str) -> Dict[str, Any]:
		return await self._request("GET", f"/checkouts/{session_id}")

	# **************    Payments
	async def create_payment(self, payload: dict) -> Dict[str, Any]:
		return await self._request("POST", "/payments", json=payload)

	async def get_payment(self, payment_id: str) -> Dict[str, Any]:
		return await self._request("GET", f"/payments/{payment_id}")

	async def _list_payments(self, params: dict, page_size: int) -> List[Dict[str, Any]]:
		data = await self._request("GET", "/payments", params={**params, "page_size": page_size})
		items = data.get("items") if isinstance(data, dict) else data
		return list(items or [])[:page_size]

	async def list_payments(self, subscription_id: str, page_size: int = 10) -> List[Dict[str, Any]]:
		return await self._list_payments({"subscription_id": subscription_id}, page_size)

	async def list_customer_payments(self, customer_id: str, page_size: int = 10) -> List[Dict[str, Any]]:
		return await self._list_payments({"customer_id": customer_id}, page_size)

	# **************    Subscriptions
	async def get_subscription(self, subscription_id: str) -> Dict[str, Any]:
		return await self._request("GET", f"/subscriptions/{subscription_id}")

	async def update_subscription(self, subscription_id: str, payload: dict) -> Dict[str, Any]:
		return await self._request("PATCH", f"/subscriptions/{subscription_id}", json=payload)

	async def change_plan(
		self,
		subscription_id: str,
		product_id: str,
		proration_billing_mode: str = "difference_immediately",
	) -> Dict[str, Any]:
		return await self._request(
			"POST",
			f"/subscriptions/{subscription_id}/change-plan",
			json={
				"product_id": product_id,
				"quantity": 1,
				"proration_billing_mode": proration_billing_mode,
			},
		)
