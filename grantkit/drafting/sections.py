#!/usr/bin/env python3
"""Section catalogue and project metadata for community-chest proposals.

The proposal narrative is split into seven fixed sections. Each carries a
display label used in exports and a structured drafting instruction used
when the generator writes or rewrites it.
"""

import re
from dataclasses import asdict, dataclass, fields

SECTION_KEYS = (
    "necessity",
    "objectives",
    "content",
    "schedule",
    "budget",
    "evaluation",
    "effects",
)

SECTION_LABELS = {
    "necessity": "1. 사업 필요성",
    "objectives": "2. 목적 및 목표",
    "content": "3. 사업 내용",
    "schedule": "4. 추진 일정",
    "budget": "5. 예산 계획",
    "evaluation": "6. 평가 계획",
    "effects": "7. 기대 효과",
}

# A section counts as drafted once it passes this many characters.
FILLED_THRESHOLD = 50

SYSTEM_PROMPT = """당신은 사회복지공동모금회 배분사업 프로포절 작성 전문가입니다.
사업계획서의 각 섹션을 전문적이고 설득력 있게 작성해 주세요.

작성 원칙:
- 명확하고 구체적인 문장으로 작성
- 통계, 수치, 근거를 적극 활용
- 심사위원을 설득하는 논리적 흐름
- 불필요한 미사여구 없이 핵심만 간결하게
- 한국어로 자연스럽게 작성
- 각 섹션에 맞는 구조와 형식 사용"""

SECTION_INSTRUCTIONS = {
    "necessity": """사업 필요성 섹션을 작성해 주세요.

다음 구조를 따르세요:
1. 문제 현황 (통계 및 수치 포함) - 국내외 관련 통계를 인용하여 문제의 심각성 제시
2. 지역사회/현장 실태 - 구체적인 현황 데이터
3. 기존 서비스의 한계 - 기존 지원의 부족한 부분
4. 기관의 개입 필요성 - 왜 이 기관이 이 사업을 해야 하는지

【주의】"있을 것으로 예상된다" 등 추정 표현 대신 근거를 명시하고,
기관의 특화 역량과 기존 서비스와의 차별성을 반드시 포함하세요.""",

    "objectives": """목적 및 목표 섹션을 작성해 주세요.

다음 구조를 따르세요:
1. 최종 목적 (1~2문장)
2. 사업 목적 (구체적 변화)
3. 성과목표 (SMART 원칙 - 측정도구, 수치 목표치 포함)
4. 산출목표 (투입 규모, 횟수, 인원)

【주의】"향상", "증진" 등 방향만 제시하지 말고 반드시 수치 목표치(%)와
측정 도구명을 명시하세요.""",

    "content": """사업 내용 섹션을 작성해 주세요.

다음 구조를 따르세요:
1. 프로그램 개요 (사업 구조 전체 흐름)
2. 대상자 모집 방법 및 선정 기준
3. 세부 프로그램 내용 (단계별 또는 회기별)
4. 전문인력 구성 및 역할
5. 협력기관 역할 분담 (있을 경우)

【주의】프로그램 제목만 나열하지 말고 각 내용을 구체적으로 서술하세요.""",

    "schedule": """추진 일정 섹션을 작성해 주세요.

다음 구조를 따르세요:
1. 준비 단계 - 모집, 홍보, 오리엔테이션, 사전 성과 측정
2. 실행 단계 - 월별 프로그램 운영, 중간 모니터링
3. 마무리 단계 - 사후 성과 측정, 평가, 보고서 작성

월별 주요 활동을 표 형식으로 정리하고,
성과 측정(사전·중간·사후) 시점을 명확히 제시하세요.""",

    "budget": """예산 계획 섹션을 작성해 주세요.

다음 구조를 따르세요:
1. 인건비 (담당자 운영비, 단가 기준 명시)
2. 직접비 (프로그램 운영비, 교재비, 홍보비 등)
3. 관리운영비 (교통비, 통신비 등)
4. 예비비 (총액의 10% 이내)
5. 합계 (신청금액과 일치)

【핵심】모든 항목에 산출근거(단가 × 수량 = 금액)를 반드시 포함하고,
인건비 단가 기준(생활임금 또는 호봉표)을 명시하세요.""",

    "evaluation": """평가 계획 섹션을 작성해 주세요.

다음 구조를 따르세요:
1. 성과목표별 평가 지표 및 측정 도구 (척도명 명시)
2. 정량 평가 계획 (사전·중간·사후 측정 시점)
3. 정성 평가 계획 (관찰 기록, 면담, 소감문 등)
4. 데이터 수집·분석 담당자 및 방법
5. 평가 결과 활용 방안

【주의】"설문지 실시" 등 막연한 표현 대신 척도명과 측정 시점을 구체적으로 명시하세요.""",

    "effects": """기대 효과 섹션을 작성해 주세요.

다음 3가지 차원에서 기술하세요:
1. 참여자 차원 - 수치화된 변화 기대 효과
2. 지역사회 차원 - 파급 효과, 유사 기관 확산 가능성
3. 기관 차원 - 전문성 강화, 레퍼런스 확보

마지막으로:
4. 지속 가능성 - 사업 종료 후 자체 운영, 연계 계획

【주의】"삶의 질이 향상될 것입니다" 등 모호한 표현 대신
구체적이고 수치화 가능한 기대 효과를 제시하세요.""",
}

PROJECT_TYPES = ("성과중심형", "일반형", "긴급지원형")


def validate_section_key(key: str) -> str:
    """Return ``key`` if it names a section, else raise ValueError."""
    if key not in SECTION_KEYS:
        raise ValueError(
            f"Unknown section '{key}'. Valid: {', '.join(SECTION_KEYS)}"
        )
    return key


def empty_sections() -> dict:
    return {key: "" for key in SECTION_KEYS}


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


@dataclass
class ProjectMetadata:
    """Structured project information entered on the basic-info form."""
    agency_name: str = ""
    manager_name: str = ""
    phone: str = ""
    email: str = ""
    project_name: str = ""
    project_type: str = "성과중심형"
    region: str = ""
    start_date: str = ""
    end_date: str = ""
    budget_total: str = ""
    target: str = ""
    target_count: str = ""
    key_outcome: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectMetadata":
        """Build from a form payload; accepts snake_case or camelCase keys.

        Unknown keys are ignored, values are coerced to stripped strings.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("project metadata must be an object")
        known = {f.name for f in fields(cls)}
        values = {}
        for raw_key, value in data.items():
            key = _snake(str(raw_key))
            if key in known and value is not None:
                values[key] = str(value).strip()
        meta = cls(**values)
        if not meta.project_type:
            meta.project_type = "성과중심형"
        return meta

    def to_dict(self) -> dict:
        return asdict(self)

    def update(self, data: dict) -> None:
        incoming = ProjectMetadata.from_dict(data)
        supplied = {_snake(str(k)) for k in data}
        for f in fields(self):
            if f.name in supplied:
                setattr(self, f.name, getattr(incoming, f.name))

    @property
    def period(self) -> str:
        if self.start_date and self.end_date:
            return f"{self.start_date} ~ {self.end_date}"
        return "미정"

    def prompt_block(self) -> str:
        """Render the ``## 사업 기본 정보`` block shared by every prompt."""
        target = self.target or "미입력"
        if self.target_count:
            target = f"{target} ({self.target_count})"
        budget = f"{self.budget_total}원" if self.budget_total else "미입력"
        lines = [
            "## 사업 기본 정보",
            f"- 수행기관: {self.agency_name or '미입력'}",
            f"- 사업명: {self.project_name or '미입력'}",
            f"- 사업 유형: {self.project_type}",
            f"- 사업 기간: {self.period}",
            f"- 신청 금액: {budget}",
            f"- 사업 대상: {target}",
            f"- 핵심 성과 지표: {self.key_outcome or '미입력'}",
            f"- 사업 지역: {self.region or '미입력'}",
        ]
        return "\n".join(lines)
