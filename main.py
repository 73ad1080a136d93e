import asyncio
import discord
from discord.ext import commands
import sys
import traceback
import logging
import importlib
import argparse
import threading
from _version import __version__
from config import DISCORD_BOT_TOKEN, GUILD_ID, BOT_MODULES, setup_logging

# Parse command line arguments
parser = argparse.ArgumentParser(description='Meme of the Week Discord Bot')
parser.add_argument('-dev', '--development', action='store_true',
                    help='Enable development mode (debug logging)')
args = parser.parse_args()

setup_logging(debug=args.development)

# Initialize bot with intents
intents = discord.Intents.default()
intents.guilds = True
intents.guild_messages = True
intents.guild_reactions = True

bot = commands.Bot(command_prefix='!', intents=intents)

class Logger:
    """Centralized logging facade for all modules"""

    LEVELS = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    @staticmethod
    def log(module_name: str, message: str, level: str = "INFO"):
        """
        Log a message with module name tag

        Args:
            module_name: Name of the module logging the message
            message: The message to log
            level: Log level (DEBUG, INFO, WARNING, ERROR)
        """
        logging.getLogger(module_name).log(Logger.LEVELS.get(level.upper(), logging.INFO), message)

    @staticmethod
    def error(module_name: str, message: str, exception: Exception = None):
        """
        Log an error with optional exception details

        Args:
            module_name: Name of the module logging the error
            message: Error message
            exception: Optional exception object
        """
        log = logging.getLogger(module_name)
        if exception is None:
            log.error(message)
            return

        tb = ''.join(traceback.format_exception(type(exception), exception, exception.__traceback__))
        log.error(f"{message}\nException: {type(exception).__name__}: {exception}\nTraceback:\n{tb}")

# Make logger available globally
bot.logger = Logger()

# Console command registry - available to all modules
bot.console_commands = {}

def register_console_command(name, description, handler):
    """
    Register a console command that can be called from any module

    Args:
        name: Command name
        description: Help text for the command
        handler: Async function that handles the command
    """
    bot.console_commands[name] = {
        'description': description,
        'handler': handler
    }
    bot.logger.log("CONSOLE", f"Registered console command: {name}", "DEBUG")

bot.register_console_command = register_console_command

def load_modules():
    """Load every module listed in BOT_MODULES that exposes setup(bot)"""
    loaded_count = 0
    failed_count = 0

    for name in BOT_MODULES:
        try:
            module = importlib.import_module(name)

            if hasattr(module, 'setup'):
                module.setup(bot)
                bot.logger.log("MAIN", f"Loaded module: {name}")
                loaded_count += 1
            else:
                bot.logger.log("MAIN", f"Module {name} has no setup() function, skipping", "DEBUG")

        except discord.app_commands.errors.CommandAlreadyRegistered as e:
            bot.logger.log("MAIN", f"Command already registered in {name}, skipping: {e}", "WARNING")
            failed_count += 1
        except Exception as e:
            bot.logger.error("MAIN", f"Failed to load module: {name}", e)
            failed_count += 1

    bot.logger.log("MAIN", f"Successfully loaded {loaded_count} module(s), {failed_count} failed")

async def sync_commands():
    if GUILD_ID:
        guild_obj = discord.Object(id=GUILD_ID)
        bot.tree.copy_global_to(guild=guild_obj)
        synced = await bot.tree.sync(guild=guild_obj)
    else:
        synced = await bot.tree.sync()
    bot.logger.log("MAIN", f"Synced {len(synced)} command(s)")

@bot.event
async def on_ready():
    # Only run initialization on first ready, not on reconnects
    if not hasattr(bot, 'initialized'):
        bot.initialized = True
        mode = "DEVELOPMENT MODE" if args.development else "PRODUCTION MODE"
        bot.logger.log("MAIN", f"Bot online as {bot.user} - {mode} - v{__version__}")

        load_modules()
        await sync_commands()

        console_thread = threading.Thread(target=run_console, daemon=True)
        console_thread.start()
    else:
        bot.logger.log("MAIN", f"Bot reconnected as {bot.user}")

def run_console():
    """Run interactive console; handlers run on the bot's event loop"""
    bot.logger.log("CONSOLE", "Console ready. Type 'help' for commands.")

    while True:
        try:
            cmd = input("> ").strip()

            if not cmd:
                continue

            parts = cmd.split(maxsplit=1)
            command = parts[0].lower()
            args_str = parts[1] if len(parts) > 1 else ""

            if command == "help":
                print_help()
            elif command == "status":
                show_status()
            elif command in bot.console_commands:
                cmd_info = bot.console_commands[command]
                asyncio.run_coroutine_threadsafe(
                    cmd_info['handler'](args_str),
                    bot.loop
                ).result(timeout=60)
            elif command == "exit" or command == "quit":
                print("Shutting down bot...")
                asyncio.run_coroutine_threadsafe(bot.close(), bot.loop)
                break
            else:
                print(f"❓ Unknown command: {command}. Type 'help' for available commands.")

        except EOFError:
            bot.logger.log("CONSOLE", "Console input closed")
            break
        except KeyboardInterrupt:
            print("\nUse 'exit' to shutdown gracefully.")
        except Exception as e:
            print(f"⚠️ Error: {e}")

def print_help():
    """Print available console commands"""
    lines = [
        "",
        "BOT CONSOLE",
        "  help              - Show this help message",
        "  status            - Show bot status",
    ]
    for cmd_name, cmd_info in sorted(bot.console_commands.items()):
        lines.append(f"  {cmd_name:<17} - {cmd_info['description']}")
    lines.append("  exit / quit       - Shutdown bot gracefully")
    lines.append("")
    print("\n".join(lines))

def show_status():
    """Show connection and contest status"""
    print(f"\nMeme of the Week bot v{__version__} - {'DEVELOPMENT' if args.development else 'PRODUCTION'}")
    if bot.user:
        print(f"  Logged in as: {bot.user.name} ({bot.user.id})")
    print(f"  Latency: {bot.latency * 1000:.0f}ms")

    contest = getattr(bot, 'meme_contest', None)
    if contest:
        for line in contest.status_lines():
            print(f"  {line}")
    print()

@bot.event
async def on_error(event, *args, **kwargs):
    """Global error handler for bot events"""
    exc_type, exc_value, exc_traceback = sys.exc_info()
    bot.logger.error("MAIN", f"Error in event {event}", exc_value)

@bot.tree.error
async def on_app_command_error(interaction: discord.Interaction, error: discord.app_commands.AppCommandError):
    """Global error handler for slash commands"""
    bot.logger.error("MAIN", f"Command error in {interaction.command.name if interaction.command else '?'}", error)
    message = "There was an error while executing this command!"
    if interaction.response.is_done():
        await interaction.followup.send(message, ephemeral=True)
    else:
        await interaction.response.send_message(message, ephemeral=True)

def main():
    if not DISCORD_BOT_TOKEN:
        bot.logger.error("MAIN", "DISCORD_BOT_TOKEN environment variable not set!")
        bot.logger.log("MAIN", "Please set your Discord bot token in the environment or a .env file:")
        bot.logger.log("MAIN", "DISCORD_BOT_TOKEN='your-token-here'")
        sys.exit(1)

    try:
        bot.logger.log("MAIN", f"Starting Meme of the Week bot v{__version__}...")
        bot.run(DISCORD_BOT_TOKEN, log_handler=None)
    except Exception as e:
        bot.logger.error("MAIN", "Failed to start bot", e)
        sys.exit(1)

if __name__ == "__main__":
    main()
