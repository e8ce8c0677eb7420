import enum
import typing as t

__all__ = ("Intents",)


class Intents(enum.IntFlag):
    """Gateway intents.

    Each bit gates a group of dispatch events; a session never receives events
    from a group it did not ask for when identifying.
    """

    GUILDS                    = 1 << 0
    GUILD_MEMBERS             = 1 << 1
    GUILD_BANS                = 1 << 2
    GUILD_EMOJIS              = 1 << 3
    GUILD_INTEGRATIONS        = 1 << 4
    GUILD_WEBHOOKS            = 1 << 5
    GUILD_INVITES             = 1 << 6
    GUILD_VOICE_STATES        = 1 << 7
    GUILD_PRESENCES           = 1 << 8
    GUILD_MESSAGES            = 1 << 9
    GUILD_MESSAGE_REACTIONS   = 1 << 10
    GUILD_MESSAGE_TYPING      = 1 << 11
    DIRECT_MESSAGES           = 1 << 12
    DIRECT_MESSAGE_REACTIONS  = 1 << 13
    DIRECT_MESSAGE_TYPING     = 1 << 14

    @classmethod
    def none(cls) -> "Intents":
        return cls(0)

    @classmethod
    def all(cls) -> "Intents":
        value = 0
        for member in cls:
            value |= member.value
        return cls(value)

    @classmethod
    def privileged(cls) -> "Intents":
        return cls.GUILD_MEMBERS | cls.GUILD_PRESENCES

    @classmethod
    def default(cls) -> "Intents":
        """Every intent except the privileged ones."""
        return cls(cls.all() & ~cls.privileged())

    @classmethod
    def parse(cls, value: t.Union[int, str, None]) -> "Intents":
        """Builds intents from an int, a decimal string or ``A|B`` names."""
        if value is None or value == "":
            return cls.default()

        if isinstance(value, int):
            return cls(value)

        value = value.strip()
        if value.isdigit():
            return cls(int(value))

        result = cls(0)
        for name in value.split("|"):
            try:
                result |= cls[name.strip().upper()]
            except KeyError:
                raise ValueError(f"unknown intent {name.strip()!r}") from None
        return result
