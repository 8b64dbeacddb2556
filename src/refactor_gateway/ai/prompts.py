"""Prompt templates for the three generation operations.

Pure functions of the request payload. The JSON response contract at the end
of each prompt is what ``ai.extractor`` expects to recover.
"""

import json
from typing import Any, Dict, List, Optional

SYSTEM_PROMPT = (
    "You are an expert software refactoring assistant. "
    "Always return valid JSON responses as requested."
)

ESSENTIAL_PACKAGES = [
    "react, react-dom, @types/react, @types/react-dom",
    "next, @types/next",
    "typescript",
    "eslint, @typescript-eslint/*, eslint-*",
    "prettier",
    "tailwindcss, autoprefixer, postcss",
    "webpack, @babel/*, babel-*",
    "jest, @testing-library/*, @types/jest",
    "@types/node",
    "turbo, lerna",
    "husky, lint-staged",
]


def _file_extension(language: str) -> str:
    return ".ts/.tsx" if language == "TypeScript" else ".js/.jsx"


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def _response_contract(
    project_type: str,
    language: str,
    files: List[Dict[str, Any]],
    include_packages: bool,
) -> str:
    extension = _file_extension(language)
    contract: Dict[str, Any] = {
        "projectType": project_type,
        "language": language,
        "timestamp": "ISO_DATE_STRING",
        "totalFiles": "number",
        "changes_summary": "Comprehensive description of all improvements made",
        "secrets": {"ENV_VAR_NAME": "actual-hardcoded-value-found"},
    }
    if include_packages:
        contract["packageAnalysis"] = {
            "totalDependencies": "number",
            "totalDevDependencies": "number",
            "unusedPackagesFound": "number",
            "essentialPackagesKept": "number",
        }
        contract["unusedPackages"] = [
            {"name": "package-name", "type": "dependency", "reason": "Why it is unused"}
        ]
        contract["npmUninstallCommands"] = ["npm uninstall package-name"]
    contract["originalFilesToDelete"] = [f.get("path", "") for f in files]
    contract["files"] = [
        {
            "path": f"relative/path/to/file{extension}",
            "content": "COMPLETE_FILE_CONTENT",
            "isNew": "true if new file, false if replacing an original",
            "isRewritten": "true for rewritten files",
            "changes": "Description of the changes made to this file",
        }
    ]
    contract["additionalFilesToDelete"] = ["any/other/obsolete/file"]

    return (
        "**RESPONSE FORMAT (CRITICAL - MUST BE EXACT JSON):**\n"
        f"{_dump(contract)}\n\n"
        "Respond with the JSON document only. Every file must contain complete, "
        "working code with no placeholders."
    )


def _secrets_section() -> str:
    return (
        "**SECURITY ANALYSIS - EXTRACT HARDCODED SECRETS:**\n"
        "Find hardcoded API keys, tokens, credentials and connection strings. "
        "Report each in the \"secrets\" object keyed by a descriptive "
        "UPPER_SNAKE_CASE environment variable name and replace it in code "
        "with process.env.VARIABLE_NAME.\n"
    )


def _metadata_section(all_files_metadata: Optional[Any]) -> str:
    if not all_files_metadata:
        return ""
    return (
        "**PROJECT METADATA (all files, not only the selected ones):**\n"
        f"{_dump(all_files_metadata)}\n"
        "Before removing or renaming an export, check the metadata for other "
        "files that import it. Avoid introducing names that collide with "
        "existing ones.\n"
    )


def build_rewrite_prompt(
    project_type: str,
    files: List[Dict[str, Any]],
    language: str,
    package_json: Dict[str, Any],
    all_files_metadata: Optional[Any] = None,
) -> str:
    """Complete-rewrite prompt: every provided file is replaced."""
    return "\n".join([
        "You are an expert software refactoring assistant. You will COMPLETELY "
        "REWRITE all provided files with improved code.",
        "",
        "**PROJECT SETTINGS:**",
        f"- Project Type: {project_type}",
        f"- Language: {language}",
        f"- Use {_file_extension(language)} file extensions",
        "",
        "**PACKAGE.JSON:**",
        _dump(package_json),
        "",
        "Identify unused dependencies conservatively. Never remove these "
        "essential packages: " + "; ".join(ESSENTIAL_PACKAGES) + ".",
        "",
        _metadata_section(all_files_metadata),
        _secrets_section(),
        "**REWRITE RULES:**",
        "1. Replace hardcoded secrets with environment variables.",
        "2. camelCase for variables and functions, PascalCase for classes and "
        "components, UPPER_SNAKE_CASE for constants.",
        "3. Split functions longer than 50 lines; extract shared utilities.",
        "4. Remove unused functions, variables, parameters, imports and hooks.",
        f"5. Follow {language} and {project_type} best practices.",
        "6. Update every import path affected by the new structure.",
        "",
        "**ORIGINAL FILES TO COMPLETELY REWRITE:**",
        _dump({"files": files}),
        "",
        _response_contract(project_type, language, files, include_packages=True),
    ])


def build_custom_prompt(
    user_prompt: str,
    files: List[Dict[str, Any]],
    language: str,
    project_type: str,
    all_files_metadata: Optional[Any] = None,
) -> str:
    """Free-form generation prompt driven by the caller's instructions."""
    return "\n".join([
        "You are an expert software engineer. Apply the user's instructions to "
        "the provided files, creating new files where needed.",
        "",
        "**USER INSTRUCTIONS:**",
        user_prompt,
        "",
        "**PROJECT SETTINGS:**",
        f"- Project Type: {project_type}",
        f"- Language: {language}",
        "",
        _metadata_section(all_files_metadata),
        _secrets_section(),
        "**FILES:**",
        _dump({"files": files}),
        "",
        _response_contract(project_type, language, files, include_packages=False),
    ])


def build_optimize_prompt(
    files: List[Dict[str, Any]],
    language: str,
    project_type: str,
    package_json: Optional[Dict[str, Any]] = None,
) -> str:
    """Performance-focused rewrite that must preserve behaviour exactly."""
    sections = [
        "You are an expert performance engineer. Optimize the provided files "
        "without changing their observable behaviour.",
        "",
        "**PROJECT SETTINGS:**",
        f"- Project Type: {project_type}",
        f"- Language: {language}",
        "",
        "**OPTIMIZATION RULES:**",
        "1. Remove redundant computation and unnecessary re-renders.",
        "2. Prefer efficient data structures and algorithms.",
        "3. Memoize expensive pure computations where it pays off.",
        "4. Remove dead code and unused imports.",
        "5. Describe the measurable effect of each change in \"changes\".",
        "",
        _secrets_section(),
    ]
    if package_json:
        sections += ["**PACKAGE.JSON:**", _dump(package_json), ""]
    sections += [
        "**FILES TO OPTIMIZE:**",
        _dump({"files": files}),
        "",
        _response_contract(project_type, language, files, include_packages=bool(package_json)),
    ]
    return "\n".join(sections)
