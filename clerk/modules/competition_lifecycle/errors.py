class CompetitionError(Exception):
    """Base class for errors reported back to command callers."""


class CompetitionNotFound(CompetitionError):
    def __init__(self, competition_id):
        self.competition_id = competition_id
        super().__init__(f"No competition found with ID {competition_id}.")


class MissingVerificationCode(CompetitionError):
    def __init__(self, competition_id):
        self.competition_id = competition_id
        super().__init__(f"Competition {competition_id} has no stored verification code; one must be supplied.")


class UnknownMetric(CompetitionError):
    def __init__(self, label: str):
        self.label = label
        super().__init__(f"No metric found for option: {label}")


class NotEnoughPollOptions(CompetitionError):
    def __init__(self, available: int):
        self.available = available
        super().__init__(f"Only {available} poll option(s) left after exclusions; at least 2 are needed.")


class MissingChannelConfiguration(CompetitionError):
    def __init__(self, guild_id: int, channel_name: str):
        self.guild_id = guild_id
        self.channel_name = channel_name
        super().__init__(f"No {channel_name} channel is configured for guild {guild_id}.")
