"""Request bodies accepted by the streaming generation endpoints."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class GenerationRequest(BaseModel):
    """Body shared by process-code, generate-custom and optimize-files.

    Everything is optional at the schema level; presence rules are checked by
    the orchestrator after the stream is open so failures arrive as events.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: Optional[str] = None
    selected_model: Optional[str] = Field(default=None, alias="selectedModel")
    upstream_key: Optional[str] = Field(default=None, alias="openrouterApiKey")
    files: Optional[List[Dict[str, Any]]] = None
    project_type: Optional[str] = Field(default=None, alias="projectType")
    project_language: str = Field(default="JavaScript", alias="projectLanguage")
    package_json: Optional[Dict[str, Any]] = Field(default=None, alias="packageJson")
    all_files_metadata: Optional[Any] = Field(default=None, alias="allFilesMetadata")
    total_files: Optional[int] = Field(default=None, alias="totalFiles")
    total_words: Optional[int] = Field(default=None, alias="totalWords")
    workspace_path: Optional[str] = Field(default=None, alias="workspacePath")
    dependencies: Optional[Any] = None
    user_prompt: Optional[str] = Field(default=None, alias="userPrompt")
