"""Build the nested folder tree from the flat folder list."""

from typing import Dict, List, Optional

from chatshelf.schemas.organization import Folder, FolderNode


def build_tree(folders: List[Folder]) -> List[FolderNode]:
    """
    Build a forest of FolderNode from a flat folder list.

    Input order is preserved among siblings and roots; sort the flat list
    first for a stable display order. A folder whose parent does not exist
    becomes a root instead of being dropped, and so does a folder whose
    parent chain loops back to itself.
    """
    id_to_node: Dict[str, FolderNode] = {}
    parents: Dict[str, Optional[str]] = {}
    for folder in folders:
        id_to_node[folder.id] = FolderNode(id=folder.id, name=folder.name, parent=folder.parent)
        parents[folder.id] = folder.parent

    roots: List[FolderNode] = []
    for folder in folders:
        node = id_to_node[folder.id]
        if folder.parent in id_to_node and not _in_cycle(folder.id, parents):
            id_to_node[folder.parent].children.append(node)
        else:
            roots.append(node)
    return roots


def _in_cycle(folder_id: str, parents: Dict[str, Optional[str]]) -> bool:
    seen = set()
    current = parents.get(folder_id)
    while current is not None and current in parents:
        if current == folder_id:
            return True
        if current in seen:
            return False
        seen.add(current)
        current = parents[current]
    return False


def sort_folders_by_name(folders: List[Folder]) -> List[Folder]:
    """Case-insensitive name order, ties kept in original order."""
    return sorted(folders, key=lambda f: f.name.lower())


def iter_tree(nodes: List[FolderNode], level: int = 0):
    """Yield (level, node) depth-first, e.g. for indented folder pickers."""
    for node in nodes:
        yield level, node
        yield from iter_tree(node.children, level + 1)
