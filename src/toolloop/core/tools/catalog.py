"""
Invocation contracts of the standard workspace tools.

The runtime owns these schemas so it can validate and describe them, but
their runners are supplied by the host (see the ``toolloop.tools`` entry
point group). A schema without a runner dispatches as UnknownTool.
"""

from toolloop.core.tools.schema import FieldSpec, FieldType, ToolSchema

READ_FILE = ToolSchema(
    name="read_file",
    description="Read the contents of a file in the workspace.",
    fields=(FieldSpec(name="path", description="Workspace-relative file path", non_empty=True),),
    examples=('<tool name="read_file">\n<path>src/main.py</path>\n</tool>',),
    read_only=True,
)

LIST_FILES = ToolSchema(
    name="list_files",
    description="List files and directories inside a workspace directory.",
    fields=(
        FieldSpec(name="path", description="Directory to list", non_empty=True),
        FieldSpec(
            name="recursive",
            type=FieldType.BOOLEAN,
            description="List subdirectories recursively",
            required=False,
            default=False,
        ),
    ),
    read_only=True,
)

SEARCH_FILES = ToolSchema(
    name="search_files",
    description="Regex search across files in a directory, returning matches with context.",
    fields=(
        FieldSpec(name="path", description="Directory to search in", non_empty=True),
        FieldSpec(name="regex", description="Regular expression to search for", non_empty=True, strip=False),
        FieldSpec(
            name="file_pattern",
            description="Glob pattern to filter files, e.g. *.py",
            required=False,
            default=None,
        ),
    ),
    read_only=True,
)

WRITE_TO_FILE = ToolSchema(
    name="write_to_file",
    description="Create or overwrite a file with the given content.",
    fields=(
        FieldSpec(name="path", description="Workspace-relative file path", non_empty=True),
        FieldSpec(name="content", description="Complete new file content", strip=False),
    ),
    examples=(
        '<tool name="write_to_file">\n<path>notes/todo.md</path>\n'
        "<content># TODO&#10;- write tests</content>\n</tool>",
    ),
    requires_approval=True,
)

MULTI_REPLACE_STRING_IN_FILE = ToolSchema(
    name="multi_replace_string_in_file",
    description=(
        "Apply several exact string replacements, possibly across files, in one call. "
        "Replacements run in ascending 'order'. Use &#10; for newlines and &#9; for tabs."
    ),
    fields=(
        FieldSpec(
            name="replacements",
            type=FieldType.LIST,
            description="Replacement operations, either as sub-elements or a JSON array",
            item_name="replacement",
            min_items=1,
            item_fields=(
                FieldSpec(name="filePath", description="Path to the file to edit", non_empty=True),
                FieldSpec(name="oldString", description="Exact string to find", non_empty=True, strip=False),
                FieldSpec(name="newString", description="Replacement string", strip=False),
                FieldSpec(
                    name="caseInsensitive",
                    type=FieldType.BOOLEAN,
                    description="Case-insensitive matching",
                    required=False,
                    default=False,
                ),
                FieldSpec(
                    name="useRegex",
                    type=FieldType.BOOLEAN,
                    description="Treat oldString as a regular expression",
                    required=False,
                    default=False,
                ),
                FieldSpec(
                    name="order",
                    type=FieldType.INTEGER,
                    description="Execution order, lower runs first",
                    required=False,
                    default=0,
                ),
            ),
        ),
    ),
    examples=(
        '<tool name="multi_replace_string_in_file">\n<replacements>\n'
        "<replacement><filePath>src/app.py</filePath><oldString>foo()</oldString>"
        "<newString>bar()</newString></replacement>\n"
        "</replacements>\n</tool>",
    ),
    requires_approval=True,
)

EXECUTE_COMMAND = ToolSchema(
    name="execute_command",
    description="Run a shell command in the workspace root and return its output.",
    fields=(FieldSpec(name="command", description="Command line to execute", non_empty=True, strip=False),),
    requires_approval=True,
)

WORKSPACE_TOOL_SCHEMAS: tuple[ToolSchema, ...] = (
    READ_FILE,
    LIST_FILES,
    SEARCH_FILES,
    WRITE_TO_FILE,
    MULTI_REPLACE_STRING_IN_FILE,
    EXECUTE_COMMAND,
)
