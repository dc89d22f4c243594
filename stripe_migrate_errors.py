"""Exceptions shared by the migration stages."""


class MigrationSetupError(Exception):
    """A prerequisite dataset or mapping file is missing or unreadable. Aborts the stage."""


class ExportError(Exception):
    """The source account failed during an export. Nothing was written."""


class RecordError(ValueError):
    """An exported record is missing a required field."""

    def __init__(self, kind: str, old_id: str, message: str):
        super().__init__("%s %s: %s" % (kind, old_id, message))
        self.kind = kind
        self.old_id = old_id


class DependencyNotReady(Exception):
    """A record references an entity that has not been migrated yet."""

    def __init__(self, kind: str, old_id: str):
        super().__init__("%s %s not migrated yet" % (kind, old_id))
        self.kind = kind
        self.old_id = old_id
