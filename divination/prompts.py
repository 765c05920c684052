"""Prompt assembly: persona + divination payload → one prompt string.

The per-category reply formats live in a declarative table of Handlebars
templates (rendered with pybars). Persona-specific wording comes from the
persona's override records, never from branching code:

    base prompt
    [category block: role clause + rendered format template + closing line]
    占卜数据： <payload as indented JSON>
    [用户问题： <question>]
    trailing directives (language, Markdown conventions, word ceiling)
"""

import json
from collections.abc import Callable
from typing import Any

import pybars

from divination.config import DEFAULT_WORD_LIMIT, QUESTION_WORD_BONUS
from divination.errors import ErrorKind, GenerationError
from divination.models import PAYLOAD_TYPES, Persona
from divination.personas import is_valid_persona

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

DATA_HEADING = "占卜数据："
QUESTION_HEADING = "用户问题："
ANALYSIS_REQUEST = "请根据以上信息进行详细的占卜分析："


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_template(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Category templates ───────────────────────────────────
#
# Context: word_limit (int, already raised for questions), has_question (bool).

CATEGORY_TEMPLATES: dict[str, dict[str, str]] = {
    "hexagram": {
        "format": """请按照以下格式解读用户的六爻卦象（控制在{{word_limit}}字以内）：

## 六爻卦象解读

### 1. 卦象整体解读
- **本卦象征**：分析本卦的含义和象征
- **整体指导**：解释卦象对当前问题的整体指导
- **现状分析**：描述当前状况和面临的挑战或机遇

### 2. 变爻解读（如有变爻）
- **爻辞分析**：逐一分析每个变爻的爻辞和象辞
- **变爻含义**：解释变爻的具体含义和预示
- **变卦意义**：分析变卦的意义和转化方向

### 3. 综合建议
- **行动指南**：基于卦象给出具体的行动建议
- **时机选择**：提供时机选择的指导
- **注意事项**：给出注意事项和应对策略
{{#if has_question}}
### 4. 问事分析
- **所问之事**：针对用户的具体问题给出卦象层面的回答
- **成败倾向**：判断所问之事的发展倾向

### 5. 总结{{else}}
### 4. 总结{{/if}}
- **核心要点**：简明扼要地总结核心要点
- **指导方向**：给出最终的指导方向
""",
        "closing": "请结合你的专长进行六爻分析。",
    },
    "time-chart": {
        "format": """请按照以下格式解读用户的八字命盘（控制在{{word_limit}}字以内）：

## 八字推命解析

### 1. 命格总论
- **四柱格局**：分析年月日时四柱的整体格局特征
- **五行平衡**：解读五行配置及其对人生的影响
- **命理特征**：概述主要的命理特征和人生格局

### 2. 性格天赋
- **性格特质**：基于日干和四柱组合分析性格特点
- **行为模式**：解读个人的行为模式和心理特征
- **天赋优势**：分析个人天赋和发展优势

### 3. 人生运势
- **事业财运**：分析适合的职业方向和财运特征
- **感情婚姻**：解读感情观念和婚姻运势
- **健康状况**：基于五行分析体质和健康注意事项

### 4. 开运指导
- **五行调理**：提供五行平衡的调理建议
- **风水方位**：给出有利的方位和颜色建议
- **生活指导**：提供具体的生活和发展指导
{{#if has_question}}
### 5. 问事分析
- **具体问事**：针对用户的具体问题进行深入分析
- **时机把握**：分析问事相关的最佳时机和行动建议
- **注意事项**：提醒需要注意的问题和规避建议
- **解决方案**：提供实际可行的解决方案和策略

### 6. 总结{{else}}
### 5. 总结{{/if}}
- **核心要点**：简明扼要地总结八字命理的核心要点
- **人生指导**：给出最终的人生发展指导方向
""",
        "closing": "请结合你的专长进行八字推命分析。",
    },
    "dream": {
        "format": """请按照以下格式解读用户的梦境（控制在{{word_limit}}字以内）：

## 周公解梦分析

### 1. 梦境整体解读
- **梦境主题**：识别梦境的核心主题和象征意义
- **情感基调**：分析梦境中的情感氛围和心理状态
- **关键要素**：解读梦境中的重要元素和符号

### 2. 象征意义分析
- **传统寓意**：根据周公解梦传统解释象征含义
- **心理层面**：从现代心理学角度分析潜意识表达
- **现实映射**：分析梦境与现实生活的对应关系

### 3. 吉凶判断
- **运势预示**：分析梦境对未来运势的预示
- **警示信息**：提取梦境中的警示或提醒信息
- **机遇暗示**：解读梦境中隐含的机遇信息

### 4. 现实指导
- **行动建议**：基于梦境分析给出实际行动建议
- **心理调节**：提供心理调节和情绪管理建议
{{#if has_question}}
### 5. 问事分析
- **梦与所问**：说明梦境与用户所问之事的关联
- **应对之道**：给出针对该问题的建议

### 6. 总结{{else}}
### 5. 总结{{/if}}
- **核心要点**：简明扼要地总结梦境的核心信息
- **指导方向**：给出具体的人生指导方向

结合传统周公解梦理论和现代心理学观点，从象征意义、心理暗示、现实指导三个层面展开。
""",
        "closing": "请结合你的专长进行梦境解读。",
    },
    "palm-image": {
        "format": """请仔细观察这张图片，重点关注其中的手相部分进行分析（控制在{{word_limit}}字以内）：

**分析原则**：
- 如果图片中包含可识别的手相部分（即使同时包含其他内容），请重点分析手相部分
- 如果图片中完全没有手相内容（如：纯风景、纯人脸照片、纯物品等），请提醒用户上传包含手相的图片
- 如果手相部分过于模糊或不完整影响分析，可以建议用户提供更清晰的手相图片，但仍需尝试分析可见部分
- 优先进行分析，只有在完全无法识别手相特征时才建议重新拍摄

## 手相特征分析

### 1. 主要纹路分析
- **生命线**：健康状况和生命力分析
- **智慧线**：思维能力和性格特征解读
- **感情线**：情感状态和人际关系分析
- **事业线**：职业发展和成就潜力预测

### 2. 手掌形状和特征
- **手掌形状**：手掌形状对性格的影响
- **手指特征**：手指长短和灵活度的意义
- **掌纹特色**：手掌厚薄和纹理的含义
{{#if has_question}}
### 3. 问事分析
- **掌中所示**：结合掌纹回答用户的具体问题

### 4. 综合分析{{else}}
### 3. 综合分析{{/if}}
- **性格天赋**：性格特质和天赋分析
- **发展趋势**：人生发展趋势预测
- **改善建议**：改善建议和注意事项
""",
        "closing": "请结合你的专长进行手相分析。",
    },
}

TRAILING_DIRECTIVES = """**严格语言要求**：
- 回复内容必须100%使用简体中文
- 严禁使用英文、俄文、日文或任何其他语言
- 所有术语、解释、建议、标点符号都必须是中文
- 如遇到专业术语，必须使用中文表达或中文音译

**格式要求**：
- 必须使用Markdown格式输出
- 使用合适的标题层级（##、###、####）
- 仅在关键结论和核心要点处谨慎使用**粗体**标记，避免过度使用
- 使用项目符号和编号列表组织内容
- 回复需控制在{{word_limit}}字以内，重点突出，避免冗余"""


# ── Assembly ─────────────────────────────────────────────


def serialize_payload(payload: Any) -> str:
    """Render a payload as the indented JSON placed under the data heading."""
    data = payload.model_dump(mode="json", exclude={"category", "question"}, exclude_none=True)
    return json.dumps(data, ensure_ascii=False, indent=2)


def word_ceiling(word_limit: int, has_question: bool) -> int:
    return word_limit + QUESTION_WORD_BONUS if has_question else word_limit


def role_clause(persona: Persona, category: str) -> str:
    """The opening of a category block: the persona override, or "你是X。" plus a blank line."""
    override = persona.overrides.get(category)
    if override is None:
        return f"你是{persona.display_name}。\n\n"
    parts = [override.role_text.strip()]
    if override.style_text.strip():
        parts.append(override.style_text.strip())
    return "\n\n".join(parts) + "\n\n"


def assemble(
    persona: Persona,
    payload: Any,
    category: str | None = None,
    user_context: str | None = None,
    *,
    word_limit: int = DEFAULT_WORD_LIMIT,
) -> str:
    """Build the full prompt for one interpretation request.

    Deterministic: identical inputs give byte-identical output. Raises
    GenerationError(INVALID_INPUT) instead of returning a partial prompt
    when the persona, payload, or category is unusable.
    """
    if not isinstance(persona, Persona) or not is_valid_persona(persona):
        raise GenerationError(ErrorKind.INVALID_INPUT, "大师配置无效")
    if not isinstance(payload, PAYLOAD_TYPES):
        raise GenerationError(ErrorKind.INVALID_INPUT, "占卜数据无效")
    if category is not None:
        if category not in CATEGORY_TEMPLATES:
            raise GenerationError(ErrorKind.INVALID_INPUT, f"不支持的占卜类型: {category}")
        if category != payload.category:
            raise GenerationError(ErrorKind.INVALID_INPUT, "占卜类型与占卜数据不匹配")

    question = (user_context or payload.question or "").strip()
    has_question = bool(question)
    ctx = {"word_limit": word_ceiling(word_limit, has_question), "has_question": has_question}

    sections = [persona.base_prompt.strip()]

    if category is not None:
        template = CATEGORY_TEMPLATES[category]
        block = role_clause(persona, category)
        block += render_template(template["format"], ctx).rstrip()
        block += "\n\n" + template["closing"]
        sections.append(block)

    sections.append(f"{DATA_HEADING}\n{serialize_payload(payload)}")

    if has_question:
        sections.append(f"{QUESTION_HEADING}\n{question}")

    sections.append(ANALYSIS_REQUEST)
    sections.append(render_template(TRAILING_DIRECTIVES, ctx))

    return "\n\n".join(sections)
