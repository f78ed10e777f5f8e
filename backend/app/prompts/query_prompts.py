"""
Prompts for AEO query generation and per-query brand/source analysis
"""

from typing import List, Optional

from ..models.schemas import Project, QueryRecord, VALID_QUERY_CATEGORIES

# How many earlier query texts to quote back when asking for more
MAX_PREVIOUS_QUERIES_IN_PROMPT = 50


def _join(values: Optional[List[str]], default: str) -> str:
    values = [v for v in (values or []) if v]
    return ", ".join(values) if values else default


def _numbered_categories() -> str:
    return "\n".join(f"  {idx}. {cat}" for idx, cat in enumerate(VALID_QUERY_CATEGORIES, 1))


def _query_mix(project: Project) -> str:
    educational = project.educational_ratio if project.educational_ratio is not None else 50
    service = project.service_ratio if project.service_ratio is not None else 50
    return f"{educational}% Educational, {service}% Service-Aligned"


def _format_instruction(project: Project) -> str:
    if project.query_format in ("Natural-language questions", "Keyword phrases"):
        return f'Use only "{project.query_format}"'
    return "Mix of natural language questions and keyword phrases"


GENERATION_OUTPUT_FORMAT = """Output as a JSON array with this exact format:
[
  {
    "query_text": "Example query text here",
    "query_type": "Educational",
    "query_category": "Industry monitoring",
    "query_format": "Natural-language questions",
    "target_audience": "Business professionals"
  }
]

IMPORTANT:
- query_type must be exactly "Educational" or "Service-Aligned"
- query_category must be one of the 10 categories listed above
- query_format must be exactly "Natural-language questions" or "Keyword phrases"
- Return ONLY the JSON array, no additional text"""


def build_analysis_prompt(query: QueryRecord, project: Project) -> str:
    """Prompt asking which brands and sources would appear in answers to one query"""
    return f"""Analyze this AEO query and provide structured information:

Query: "{query.query_text}"
Query Type: {query.query_type}
Category: {query.query_category}
Target Audience: {query.target_audience}

Company: {project.company_url or 'Not specified'}
Competitors: {_join(project.competitor_urls, 'Not specified')}

Please analyze:
1. Which brands would likely be mentioned in answers to this query? (List specific brand names)
2. What sources (websites, platforms, forums) would typically answer this query?
3. Confirm or correct the query type and category

Output as JSON with this exact format:
{{
  "brand_mentions": ["Brand1", "Brand2", "Brand3"],
  "source": "Source name or platform (e.g., 'Reddit forums', 'Industry documentation', 'Review sites')",
  "query_type": "Educational",
  "query_category": "Industry monitoring"
}}

IMPORTANT:
- brand_mentions should be an array of specific brand/company names (not generic terms)
- query_type must be exactly "Educational" or "Service-Aligned"
- query_category must be one of the 10 valid categories
- Return ONLY the JSON object, no additional text"""


def build_generation_prompt(project: Project, count: int) -> str:
    """Prompt for the initial batch of exactly `count` queries"""
    manual = ""
    if project.manual_queries:
        manual = f"\nInclude these manual queries: {', '.join(project.manual_queries)}\n"

    return f"""Generate EXACTLY {count} Answer Engine Optimization (AEO) queries for analysis.

Company: {project.company_url or 'Not specified'}
Competitors: {_join(project.competitor_urls, 'Not specified')}
Target Audience: {_join(project.audience, 'General audience')}
Focus Areas: {project.themes or 'General topics'}
Query Mix: {_query_mix(project)}

Requirements:
- {_format_instruction(project)}
- Never include company names or brand names in queries
- No exact, near, or semantic duplicates
- Cover all 10 query categories:
{_numbered_categories()}
{manual}
{GENERATION_OUTPUT_FORMAT}"""


def build_additional_queries_prompt(
    project: Project,
    remaining: int,
    previous_queries: List[str]
) -> str:
    """Prompt for a top-up batch that must not repeat earlier queries"""
    previous = "\n".join(f"- {text}" for text in previous_queries[-MAX_PREVIOUS_QUERIES_IN_PROMPT:])

    return f"""Generate EXACTLY {remaining} MORE unique AEO queries for:

Company: {project.company_url or 'Not specified'}
Target Audience: {_join(project.audience, 'General audience')}
Focus Areas: {project.themes or 'General topics'}
Query Mix: {_query_mix(project)}
Categories to distribute across: {', '.join(VALID_QUERY_CATEGORIES)}

These queries must be:
1. Different from every previous query listed below
2. Distributed across the categories mentioned above
3. Format: {_format_instruction(project)}
4. Free of brand names or company names

Previous queries:
{previous or '- (none)'}

{GENERATION_OUTPUT_FORMAT}"""
