"""ETS project import.

Reads a project file from the file store, parses it and flattens its group
address tree into ImportEntry objects with aggregated flags and stable ids.
Nothing is persisted here; see ``exporters.state_exporter`` for that.
"""

import hashlib
import logging
import os
from typing import Callable, List, Optional, Sequence, Tuple

from .exceptions import FileNotFound, ImportUnavailable, NoProjectConfigured
from .models import ImportEntry, ImportResult
from .models.project import ProjectDocument
from .parsers import knx_parser
from .parsers.flag_aggregator import build_flags_by_group_address_id, flags_for
from .parsers.tree_walker import CollectedAddress, walk_trees
from .storage.file_store import FileStore
from .utils.address_codec import (
    GA_STYLES, STYLE_THREE_LEVEL, address_segment, encode_address,
    normalize_type_id, sanitize_id_segment,
)

logger = logging.getLogger(__name__)

GA_NAMESPACE = 'ga'
LEGACY_PROJECT_DIR = 'ets'
STYLE_AUTO = 'auto'

ParserFactory = Callable[[str, Optional[str], Optional[str]], knx_parser.KNXParser]


def resolve_style(project_style: Optional[str], override: Optional[str] = STYLE_AUTO) -> str:
    """Address style to render with.

    ``"auto"`` (or nothing) uses the style declared by the project, which
    defaults to ThreeLevel. Any other override wins.
    """
    if override and override != STYLE_AUTO:
        if override not in GA_STYLES:
            logger.warning(f"Unknown group address style '{override}', rendering ThreeLevel")
        return override
    return project_style or STYLE_THREE_LEVEL


def build_entry_id(group_range_path: Sequence[str], rendered_address: str) -> str:
    """Stable object id ``ga.<range>.<range>.<address>`` of a group address."""
    segments = [GA_NAMESPACE] + [sanitize_id_segment(seg) for seg in group_range_path]
    segments.append(address_segment(rendered_address))
    return '.'.join(seg for seg in segments if seg)


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def build_entries(project: ProjectDocument, style: str) -> List[ImportEntry]:
    """
    Flatten a parsed project into import entries.

    Args:
        project: Parsed project
        style: Address style used for rendering and ids

    Returns:
        Entries in group range tree order
    """
    flags_by_ga_id = build_flags_by_group_address_id(project)
    collected: List[CollectedAddress] = walk_trees(project.group_address_trees)

    entries = []
    for item in collected:
        ga = item.group_address
        ga_str = encode_address(ga.address, style)
        entries.append(ImportEntry(
            id=build_entry_id(item.group_range_path, ga_str),
            name=ga.name or ga_str,
            ga=ga_str,
            dpt=normalize_type_id(ga.datapoint_type),
            flags=flags_for(flags_by_ga_id, ga.id),
            description=ga.description or None,
        ))
    return entries


class ImportEngine:
    """Imports ETS projects stored in the file store"""

    def __init__(self, file_store: FileStore, data_dir: str,
                 parser_factory: Optional[ParserFactory] = None):
        """
        Initialize import engine.

        Args:
            file_store: Store the uploaded project files live in
            data_dir: Working directory for the unpacked project
            parser_factory: Callable ``(path, password, language)`` returning
                            an object with ``parse()``; defaults to KNXParser
        """
        self.file_store = file_store
        self.data_dir = data_dir
        self.parser_factory = parser_factory or knx_parser.KNXParser

    def read_project_file(self, ets_file_name: str) -> Tuple[str, bytes]:
        """
        Read the project from the file store.

        Bare file names are also looked up below ``ets/`` where older
        versions stored uploads.

        Returns:
            Tuple of (file name actually read, raw content)

        Raises:
            FileNotFound: If neither location holds the file
        """
        file_name = ets_file_name.strip()
        try:
            return file_name, self.file_store.read_file(file_name)
        except (FileNotFoundError, IsADirectoryError):
            pass

        if file_name and '/' not in file_name:
            alt = f"{LEGACY_PROJECT_DIR}/{file_name}"
            try:
                data = self.file_store.read_file(alt)
                logger.info(f"ETS project found at legacy location {alt}")
                return alt, data
            except (FileNotFoundError, IsADirectoryError):
                pass

        raise FileNotFound(file_name, self.file_store.location)

    def _stage_project(self, file_name: str, data: bytes) -> str:
        """Write the project into the data dir, the parser needs a path."""
        os.makedirs(self.data_dir, exist_ok=True)
        suffix = '.json' if file_name.lower().endswith('.json') else '.knxproj'
        project_path = os.path.join(self.data_dir, f"project{suffix}")

        with open(project_path, 'wb') as f:
            f.write(data)
        return project_path

    def run(self, ets_file_name: Optional[str], ga_style_override: Optional[str] = STYLE_AUTO,
            password: Optional[str] = None, language: Optional[str] = None) -> ImportResult:
        """
        Import an ETS project.

        Args:
            ets_file_name: Name of the project inside the file store
            ga_style_override: "auto" or one of ThreeLevel/TwoLevel/Free
            password: Password of a protected project
            language: Language for translated texts

        Returns:
            ImportResult with content hash, address style and entries

        Raises:
            ImportUnavailable: xknxproject is not installed (.knxproj input)
            NoProjectConfigured: No file name given
            FileNotFound: File missing in the file store
        """
        is_json = isinstance(ets_file_name, str) and ets_file_name.strip().lower().endswith('.json')
        if not is_json and self.parser_factory is knx_parser.KNXParser and not knx_parser.parser_available():
            raise ImportUnavailable('Dependency "xknxproject" not available')

        if not ets_file_name or not isinstance(ets_file_name, str) or not ets_file_name.strip():
            raise NoProjectConfigured('No ETS project file configured')

        file_name, data = self.read_project_file(ets_file_name)
        digest = content_hash(data)

        project_path = self._stage_project(file_name, data)
        project = self.parser_factory(project_path, password, language).parse()

        style = resolve_style(project.group_address_style, ga_style_override)
        entries = build_entries(project, style)

        logger.info(f"ETS import of {file_name}: style {style}, {len(entries)} entries, hash {digest[:12]}")
        return ImportResult(hash=digest, style=style, entries=entries)
