"""Tool definitions and argument models for the filesystem tools."""

from pydantic import BaseModel, ConfigDict, Field

from conduit_fs.protocol.tools import JSONSchema, Tool

_STRING = {"type": "string"}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}


def _schema(required: list[str], **properties: dict) -> JSONSchema:
    return JSONSchema(
        properties=properties, required=required, additional_properties=False
    )


# ================================
# Argument models
# ================================


class _Arguments(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class NoArguments(_Arguments):
    pass


class PathArguments(_Arguments):
    path: str


class ReadMultipleArguments(_Arguments):
    paths: list[str]


class WriteArguments(_Arguments):
    path: str
    content: str


class EditItem(_Arguments):
    old_text: str = Field(alias="oldText")
    new_text: str = Field(alias="newText")


class EditArguments(_Arguments):
    path: str
    edits: list[EditItem]
    dry_run: bool = Field(default=False, alias="dryRun")


class MoveArguments(_Arguments):
    source: str
    destination: str


class SearchArguments(_Arguments):
    path: str
    pattern: str
    exclude_patterns: list[str] = Field(default_factory=list, alias="excludePatterns")


# ================================
# Tool definitions
# ================================

READ_FILE = Tool(
    name="read_file",
    description=(
        "Read the complete contents of a file from the file system. "
        "Provides detailed error messages if the file cannot be read. "
        "Only works within allowed directories."
    ),
    input_schema=_schema(["path"], path=_STRING),
)

READ_MULTIPLE_FILES = Tool(
    name="read_multiple_files",
    description=(
        "Read the contents of multiple files simultaneously. Each file's content "
        "is returned with its path as a reference. Failed reads for individual "
        "files won't stop the entire operation. Only works within allowed "
        "directories."
    ),
    input_schema=_schema(["paths"], paths=_STRING_LIST),
)

WRITE_FILE = Tool(
    name="write_file",
    description=(
        "Create a new file or completely overwrite an existing file with new "
        "content. Use with caution as it will overwrite existing files without "
        "warning. Only works within allowed directories."
    ),
    input_schema=_schema(["path", "content"], path=_STRING, content=_STRING),
)

EDIT_FILE = Tool(
    name="edit_file",
    description=(
        "Make edits to a text file. Each edit replaces the first exact "
        "occurrence of oldText with newText, applied in order. Returns a "
        "git-style diff showing the changes made. Only works within allowed "
        "directories."
    ),
    input_schema=_schema(
        ["path", "edits"],
        path=_STRING,
        edits={
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "oldText": {
                        "type": "string",
                        "description": "Text to search for - must match exactly",
                    },
                    "newText": {
                        "type": "string",
                        "description": "Text to replace with",
                    },
                },
                "required": ["oldText", "newText"],
            },
        },
        dryRun={
            "type": "boolean",
            "description": "Preview changes using git-style diff format",
        },
    ),
)

CREATE_DIRECTORY = Tool(
    name="create_directory",
    description=(
        "Create a new directory or ensure a directory exists. Can create "
        "multiple nested directories in one operation. If the directory already "
        "exists, this operation will succeed silently. Only works within allowed "
        "directories."
    ),
    input_schema=_schema(["path"], path=_STRING),
)

LIST_DIRECTORY = Tool(
    name="list_directory",
    description=(
        "Get a detailed listing of all files and directories in a specified "
        "path. Results distinguish between files and directories with [FILE] "
        "and [DIR] prefixes. Only works within allowed directories."
    ),
    input_schema=_schema(["path"], path=_STRING),
)

DIRECTORY_TREE = Tool(
    name="directory_tree",
    description=(
        "Get a recursive tree view of files and directories as a JSON "
        "structure. Each entry includes 'name', 'type' (file/directory), and "
        "'children' for directories. Files have no children array, while "
        "directories always have a children array (which may be empty). Only "
        "works within allowed directories."
    ),
    input_schema=_schema(["path"], path=_STRING),
)

MOVE_FILE = Tool(
    name="move_file",
    description=(
        "Move or rename files and directories. If the destination exists, the "
        "operation will fail. Both source and destination must be within "
        "allowed directories."
    ),
    input_schema=_schema(
        ["source", "destination"], source=_STRING, destination=_STRING
    ),
)

SEARCH_FILES = Tool(
    name="search_files",
    description=(
        "Recursively search for files and directories matching a glob pattern "
        "like '*.py' or '*.{py,txt}'. Returns full paths to all matching items. "
        "Only searches within allowed directories."
    ),
    input_schema=_schema(
        ["path", "pattern"],
        path=_STRING,
        pattern=_STRING,
        excludePatterns=_STRING_LIST,
    ),
)

GET_FILE_INFO = Tool(
    name="get_file_info",
    description=(
        "Retrieve detailed metadata about a file or directory: size, creation "
        "time, last modified time, permissions, and type. Only works within "
        "allowed directories."
    ),
    input_schema=_schema(["path"], path=_STRING),
)

LIST_ALLOWED_DIRECTORIES = Tool(
    name="list_allowed_directories",
    description=(
        "Returns the list of directories that this server is allowed to access."
    ),
    input_schema=_schema([]),
)

ALL_TOOLS = [
    READ_FILE,
    READ_MULTIPLE_FILES,
    WRITE_FILE,
    EDIT_FILE,
    CREATE_DIRECTORY,
    LIST_DIRECTORY,
    DIRECTORY_TREE,
    MOVE_FILE,
    SEARCH_FILES,
    GET_FILE_INFO,
    LIST_ALLOWED_DIRECTORIES,
]
