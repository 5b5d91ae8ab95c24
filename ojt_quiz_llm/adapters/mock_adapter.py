from __future__ import annotations

import json
from typing import Iterable, Union

from ..core.types import GenerationRequest, ProviderConfig
from .base import ProviderStatus

CANNED_QUIZ = {
    "quiz": [
        {
            "question": "신입사원이 가장 먼저 확인해야 하는 문서는 무엇인가요?",
            "options": ["온보딩 가이드", "휴가 신청서", "회의록", "사내 메뉴판"],
            "correctIndex": 0,
            "explanation": "온보딩 가이드에 첫 주 일정이 정리되어 있습니다.",
            "difficulty": "easy",
            "category": "recall",
        },
        {
            "question": "멘토와의 주간 점검 회의의 주요 목적은 무엇인가요?",
            "options": ["급여 협상", "학습 진척도 공유", "사무실 배치", "출장 정산"],
            "correctIndex": 1,
            "explanation": "주간 점검은 학습 진척도를 공유하는 자리입니다.",
            "difficulty": "medium",
            "category": "comprehension",
        },
        {
            "question": "보안 사고를 발견했을 때 올바른 첫 대응은 무엇인가요?",
            "options": ["무시한다", "동료에게만 알린다", "보안팀에 즉시 보고한다", "다음 날 보고한다"],
            "correctIndex": 2,
            "explanation": "보안 사고는 즉시 보안팀에 보고해야 합니다.",
            "difficulty": "medium",
            "category": "application",
        },
        {
            "question": "OJT 학습 기록은 어디에서 확인할 수 있나요?",
            "options": ["이메일", "메신저", "종이 서류", "학습 대시보드"],
            "correctIndex": 3,
            "explanation": "학습 기록은 대시보드에 저장됩니다.",
            "difficulty": "hard",
            "category": "recall",
        },
    ]
}


class MockAdapter:
    """Adapter that replays scripted responses for testing and offline runs.

    Each scripted entry is either the text to return or an exception to raise.
    Once the script is exhausted the canned quiz is returned.
    """

    def __init__(
        self,
        name: str = "mock",
        responses: Union[Iterable[Union[str, BaseException]], None] = None,
        online: bool = True,
        supports_url_context: bool = False,
    ) -> None:
        self.id = name
        self.model = f"mock:{name}"
        self.config = ProviderConfig(
            name=name,
            base_url="mock://",
            model=self.model,
            supports_url_context=supports_url_context,
            supports_json_mode=True,
        )
        self.online = online
        self._script = list(responses or [])
        self.requests: list[GenerationRequest] = []
        self.status_checks = 0

    async def check_status(self) -> ProviderStatus:
        self.status_checks += 1
        status = ProviderStatus(online=self.online, model=self.model, provider=self.id, latency_ms=0)
        if not self.online:
            status["error"] = "mock provider offline"
        return status

    async def generate(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        if self._script:
            item = self._script.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        return json.dumps(CANNED_QUIZ, ensure_ascii=False)

    async def generate_with_source_context(self, request: GenerationRequest) -> str:
        if self.config.supports_url_context:
            return await self.generate(request)
        return await self.generate(request.with_embedded_source())
