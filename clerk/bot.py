import discord
from discord.ext import commands
import os
import asyncio
import pathlib
from dotenv import load_dotenv, find_dotenv
from clerk.core.database import Database
from clerk.modules.competition_lifecycle.services.announcement_service import AnnouncementService
from clerk.modules.competition_lifecycle.services.job_scheduler import JobScheduler
from clerk.modules.competition_lifecycle.services.lifecycle_service import CompetitionLifecycleService
from clerk.modules.competition_lifecycle.services.participation_service import ParticipationService
from clerk.modules.competition_lifecycle.services.state_store import CompetitionStore
from clerk.modules.competition_lifecycle.services.vote_provider import DiscordPollProvider
from clerk.modules.competition_lifecycle.services.wom_client import WiseOldManClient
import logging
from clerk.core.logging_setup import setup_logging

load_dotenv(find_dotenv())
TOKEN = os.getenv('DISCORD_TOKEN')

logger = logging.getLogger(__name__)


class ClerkBot(commands.Bot):
    def __init__(self):
        logger.info("--- ⌛ 0. Loading configuration ---")
        GUILD_ID = os.getenv("GUILD_ID")

        # one or more comma-separated guild IDs; empty means global sync
        if GUILD_ID:
            self.guild_ids = [int(gid.strip()) for gid in GUILD_ID.split(',') if gid.strip()]
            logger.info(f"Loaded {len(self.guild_ids)} target guild ID(s).")
        else:
            self.guild_ids = []
            logger.info("No GUILD_ID set, commands will be synced globally.")

        intents = discord.Intents.default()
        intents.members = True
        super().__init__(command_prefix="!", intents=intents)

        self.db: Database | None = None
        self.store: CompetitionStore | None = None
        self.wom_client: WiseOldManClient | None = None
        self.scheduler: JobScheduler | None = None
        self.lifecycle_service: CompetitionLifecycleService | None = None
        self.participation_service: ParticipationService | None = None
        self._recovered = False

    async def setup_hook(self) -> None:
        logger.info("--- 🚀 1. Initialising core services ---")
        self.db = Database()
        await self.db.connect()

        self.store = CompetitionStore(self.db)
        self.wom_client = WiseOldManClient()
        self.scheduler = JobScheduler()
        self.lifecycle_service = CompetitionLifecycleService(
            store=self.store,
            wom=self.wom_client,
            votes=DiscordPollProvider(self),
            announcer=AnnouncementService(self),
            scheduler=self.scheduler,
        )
        self.participation_service = ParticipationService(self.store, self.wom_client, self.scheduler.clock)
        logger.info("✅ Core services ready.")

        logger.info("--- 🧩 2. Loading cogs ---")
        await self.load_all_cogs()

        logger.info("--- 🛰️ 3. Syncing application commands ---")
        if self.guild_ids:
            for guild_id in self.guild_ids:
                guild = discord.Object(id=guild_id)
                self.tree.copy_global_to(guild=guild)
                await self.tree.sync(guild=guild)
                logger.info(f"✅ Commands synced to guild: {guild_id}")
        else:
            await self.tree.sync()
            logger.info("✅ Commands synced globally.")

        self.list_loaded_commands()
        logger.info("--- 🎉 Bot core ready, waiting for the Discord connection... ---")

    async def on_ready(self):
        logger.info(f"--- ✅ Connected to Discord as {self.user} (ID: {self.user.id}) ---")

        # on_ready fires again after every reconnect; timers survive those
        if self._recovered:
            return
        self._recovered = True

        logger.info("--- 🏃 4. Restoring competition timers ---")
        summary = await self.lifecycle_service.reschedule_all()
        logger.info("✅ Competition timers restored.", extra=summary)
        logger.info("======================== Bot fully ready ========================")

    async def close(self):
        logger.info("Shutting down and releasing resources...")

        # disconnect from Discord first so no new events arrive
        await super().close()
        logger.info("Discord client closed.")

        if self.scheduler:
            await self.scheduler.shutdown()

        if self.wom_client:
            await self.wom_client.close()
            logger.info("Wise Old Man client closed.")

        if self.db:
            await self.db.close()
            logger.info("Database connection closed.")

        logger.info("All resources released, bot stopped.")

    async def load_all_cogs(self):
        """Find and load every cog under clerk/modules/*/cogs."""
        project_root = pathlib.Path(__file__).parent.parent
        modules_root = project_root / "clerk" / "modules"

        for path in modules_root.rglob("cogs/*.py"):
            if path.name == "__init__.py":
                continue

            # clerk/modules/feature/cogs/cmd.py -> clerk.modules.feature.cogs.cmd
            module_path = ".".join(path.relative_to(project_root).parts).removesuffix(".py")
            try:
                await self.load_extension(module_path)
                logger.info(f"✅ Loaded: {module_path}")
            except Exception as e:
                logger.error(f"❌ Failed to load {module_path}: {e}", exc_info=True)

    def list_loaded_commands(self):
        logger.info("--- 📋 Registered application commands ---")
        commands = self.tree.get_commands()
        if not commands:
            logger.info("  No application commands found.")
        else:
            for command in commands:
                logger.info(f"  - /{command.name}")


async def main():
    setup_logging()

    if not TOKEN:
        logger.critical("DISCORD_TOKEN is not set in .env. The bot cannot start.")
        return

    bot = ClerkBot()

    try:
        await bot.start(TOKEN)
    except discord.errors.LoginFailure:
        logger.critical("The DISCORD_TOKEN provided is invalid. Check your .env file.")
    except Exception as e:
        logger.critical(f"Fatal error while starting the bot: {e}", exc_info=True)
    finally:
        if not bot.is_closed():
            logger.info("Process is exiting, closing the bot...")
            await bot.close()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Exited cleanly.")


if __name__ == "__main__":
    run()
