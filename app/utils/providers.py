"""
AI inference providers for enhancement tasks.

Each provider submits one image job and reports its status; the task router
polls through ``get_status`` on every client poll, so nothing here loops.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from app.core.config import config
from app.utils.pricing import EnhancementModel, PRICING_SETTINGS

logger = logging.getLogger("[TASKS]")


class ProviderError(Exception):
	def __init__(self, provider: str, message: str):
		super().__init__(f"{provider}: {message}")
		self.provider = provider
		self.message = message


@dataclass
class ProviderStatus:
	# processing / completed / failed
	status: str
	progress: int = 0
	output_url: Optional[str] = None
	error: Optional[str] = None


class ReplicateProvider:
	name = "replicate"
	base_url = "https://api.replicate.com/v1"

	def __init__(self, api_token: str, timeout: float = 30.0):
		self.api_token = api_token
		self.timeout = timeout

	async def _call(self, method: str, path: str, json: Optional[dict] = None) -> Dict[str, Any]:
		try:
			async with httpx.AsyncClient(timeout=self.timeout) as client:
				response = await client.request(
					method,
					f"{self.base_url}{path}",
					headers={"Authorization": f"Bearer {self.api_token}"},
					json=json,
				)
		except httpx.HTTPError as e:
			raise ProviderError(self.name, f"request failed: {e}") from e

		if response.status_code >= 400:
			raise ProviderError(self.name, f"HTTP {response.status_code}: {response.text}")
		try:
			return response.json()
		except ValueError:
			raise ProviderError(self.name, "response is not JSON")

	async def submit(
		self, model: EnhancementModel, image_url: str, prompt: Optional[str], settings: dict
	) -> str:
		model_input = {
			**model.defaults,
			**{k: v for k, v in settings.items() if k not in PRICING_SETTINGS},
			model.image_field: image_url,
		}
		if prompt:
			model_input["prompt"] = prompt
		data = await self._call(
			"POST", "/predictions",
			json={"version": model.reference, "input": model_input},
		)
		job_id = data.get("id")
		if not job_id:
			raise ProviderError(self.name, "prediction id missing in response")
		return job_id

	async def get_status(self, job_id: str) -> ProviderStatus:
		data = await self._call("GET", f"/predictions/{job_id}")
		state = data.get("status")

		if state == "succeeded":
			output = data.get("output")
			if isinstance(output, list):
				output = output[-1] if output else None
			if not output:
				return ProviderStatus(status="failed", error="Provider returned no output")
			return ProviderStatus(status="completed", progress=100, output_url=str(output))
		if state in ("failed", "canceled"):
			return ProviderStatus(status="failed", error=data.get("error") or f"Prediction {state}")
		if state == "processing":
			return ProviderStatus(status="processing", progress=50)
		return ProviderStatus(status="processing", progress=10)


class RunningHubProvider:
	name = "runninghub"

	def __init__(self, api_key: str, base_url: str, timeout: float = 30.0):
		self.api_key = api_key
		self.base_url = base_url.rstrip("/")
		self.timeout = timeout

	async def _call(self, path: str, payload: dict) -> Any:
		try:
			async with httpx.AsyncClient(timeout=self.timeout) as client:
				response = await client.post(
					f"{self.base_url}/task/openapi/{path}",
					json={"apiKey": self.api_key, **payload},
				)
		except httpx.HTTPError as e:
			raise ProviderError(self.name, f"request failed: {e}") from e

		if response.status_code >= 400:
			raise ProviderError(self.name, f"HTTP {response.status_code}: {response.text}")
		try:
			body = response.json()
		except ValueError:
			raise ProviderError(self.name, "response is not JSON")

		# RunningHub: code == 0 - успіх, інакше msg з причиною
		if body.get("code") != 0:
			raise ProviderError(self.name, body.get("msg") or f"error code {body.get('code')}")
		return body.get("data")

	async def submit(
		self, model: EnhancementModel, image_url: str, prompt: Optional[str], settings: dict
	) -> str:
		node_info_list = [
			{"nodeId": model.image_node_id, "fieldName": model.image_field, "fieldValue": image_url},
		]
		if prompt:
			node_info_list.append({"nodeId": "86", "fieldName": "text", "fieldValue": prompt})
		for override in settings.get("nodeInfoList") or []:
			node_info_list = [
				n for n in node_info_list
				if (n["nodeId"], n["fieldName"]) != (override.get("nodeId"), override.get("fieldName"))
			]
			node_info_list.append(override)

		data = await self._call(
			"create",
			{"workflowId": model.reference, "nodeInfoList": node_info_list},
		)
		job_id = (data or {}).get("taskId")
		if not job_id:
			raise ProviderError(self.name, "taskId missing in response")
		return str(job_id)

	async def get_status(self, job_id: str) -> ProviderStatus:
		state = await self._call("status", {"taskId": job_id})

		if state == "SUCCESS":
			outputs = await self._call("outputs", {"taskId": job_id}) or []
			urls = [item.get("fileUrl") for item in outputs if item.get("fileUrl")]
			if not urls:
				return ProviderStatus(status="failed", error="Provider returned no output")
			return ProviderStatus(status="completed", progress=100, output_url=urls[-1])
		if state == "FAILED":
			return ProviderStatus(status="failed", error="RunningHub task failed")
		if state == "RUNNING":
			return ProviderStatus(status="processing", progress=50)
		# QUEUED
		return ProviderStatus(status="processing", progress=10)


class ProviderRegistry:
	def __init__(self, providers: dict):
		self.providers = providers

	def get(self, name: str):
		provider = self.providers.get(name)
		if provider is None:
			raise ProviderError(name, "provider is not configured")
		return provider


def get_provider_registry() -> ProviderRegistry:
	return ProviderRegistry({
		"replicate": ReplicateProvider(
			config.REPLICATE_API_TOKEN, timeout=config.PROVIDER_TIMEOUT_SECONDS
		),
		"runninghub": RunningHubProvider(
			config.RUNNINGHUB_API_KEY,
			config.RUNNINGHUB_BASE_URL,
			timeout=config.PROVIDER_TIMEOUT_SECONDS,
		),
	})
